from fastapi import APIRouter, Depends

from deeplink_app.config import settings
from deeplink_app.dependencies import get_current_app, get_referral_service
from deeplink_app.errors import ConfigurationError, NotFoundError, ReferralsDisabledError
from deeplink_app.models.app import App
from deeplink_app.schemas.referral import (
    MilestoneUpdate,
    ReferralComplete,
    ReferralCreate,
    ReferralCreated,
    ReferralEnvelope,
    ReferralOut,
    ReferralPublic,
    ReferralPublicEnvelope,
)
from deeplink_app.security import require_api_key
from deeplink_app.services.referral_service import ReferralService

router = APIRouter(prefix="/referral", tags=["referral"])

REFERRAL_NOT_FOUND = "Referral not found"


def referral_url(app: App, code: str) -> str:
    host = app.primary_domain or settings.host
    return f"{settings.public_scheme}://{host}/ref/{code}"


@router.post(
    "/create",
    response_model=ReferralCreated,
    dependencies=[Depends(require_api_key)]
)
async def create_referral(
    payload: ReferralCreate,
    app: App = Depends(get_current_app),
    referrals: ReferralService = Depends(get_referral_service)
):
    """Create (or return the pending) referral code for a user"""
    if not app.referral_enabled:
        raise ReferralsDisabledError()

    # Cap applies to new codes only; an existing pending code is handed back
    cap = app.referral_max_per_user
    if cap is not None and referrals.find_pending(app.id, payload.user_id) is None:
        if referrals.count_active(app.id, payload.user_id) >= cap:
            raise ConfigurationError(
                f"Maximum of {cap} active referrals per user reached"
            )

    referral, code = referrals.create(app.id, payload.user_id, payload.metadata)
    return ReferralCreated(
        referral_code=code,
        referral_url=referral_url(app, code),
        referral_id=referral.id,
    )


@router.post(
    "/milestone",
    response_model=ReferralEnvelope,
    dependencies=[Depends(require_api_key)]
)
async def update_milestone(
    payload: MilestoneUpdate,
    referrals: ReferralService = Depends(get_referral_service)
):
    """Record progress (e.g. signed_up, purchased) on a non-expired referral"""
    referral = referrals.update_milestone(payload.referral_code, payload.milestone)
    if referral is None:
        raise NotFoundError(REFERRAL_NOT_FOUND)
    return ReferralEnvelope(referral=ReferralOut.model_validate(referral))


@router.post(
    "/complete",
    response_model=ReferralEnvelope,
    dependencies=[Depends(require_api_key)]
)
async def complete_referral(
    payload: ReferralComplete,
    referrals: ReferralService = Depends(get_referral_service)
):
    """Complete a pending referral; a second completion is a 404"""
    kwargs = {"milestone": payload.milestone} if payload.milestone else {}
    referral = referrals.complete(payload.referral_code, payload.referred_user_id, **kwargs)
    if referral is None:
        raise NotFoundError("Referral not found or already completed")
    return ReferralEnvelope(referral=ReferralOut.model_validate(referral))


@router.get("/{code}", response_model=ReferralPublicEnvelope)
async def get_referral(
    code: str,
    referrals: ReferralService = Depends(get_referral_service)
):
    """Public lookup of a referral code"""
    referral = referrals.get_by_code(code)
    if referral is None:
        raise NotFoundError(REFERRAL_NOT_FOUND)
    return ReferralPublicEnvelope(referral=ReferralPublic.model_validate(referral))
