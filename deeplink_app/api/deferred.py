from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from deeplink_app.config import settings
from deeplink_app.dependencies import (
    get_client_ip,
    get_current_app,
    get_deferred_service,
)
from deeplink_app.errors import NotFoundError
from deeplink_app.models.app import App
from deeplink_app.schemas.deferred import (
    ClaimResponse,
    CleanupResponse,
    FingerprintDebug,
    SignalCapture,
    SuccessResponse,
)
from deeplink_app.security import require_cleanup_key
from deeplink_app.services.deferred_service import DeferredLinkService
from deeplink_app.services.signals import DeviceSignals, generate_fingerprint

router = APIRouter(prefix="/deferred", tags=["deferred"])

LINK_NOT_FOUND = "Link not found or expired"


@router.post("/signals", response_model=SuccessResponse)
async def capture_signals(
    payload: SignalCapture,
    service: DeferredLinkService = Depends(get_deferred_service)
):
    """Attach client-side signals (timezone, language, screen) to a stored link"""
    signals = DeviceSignals(
        timezone=payload.timezone,
        language=payload.language,
        screen_width=payload.screen_width,
        screen_height=payload.screen_height,
    )
    return SuccessResponse(success=service.capture_signals(payload.referrer_token, signals))


@router.get("/claim", response_model=ClaimResponse, response_model_exclude_none=True)
async def claim_deferred_link(
    request: Request,
    token: Optional[str] = Query(None, description="Referrer token (Android install referrer)"),
    fingerprint: Optional[str] = Query(None, description="Legacy sha256(ip|user-agent) fingerprint"),
    ip: Optional[str] = Query(None, description="Client IP as seen by the app, if known"),
    timezone: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    screen_width: Optional[int] = Query(None, ge=0),
    screen_height: Optional[int] = Query(None, ge=0),
    app: App = Depends(get_current_app),
    service: DeferredLinkService = Depends(get_deferred_service)
):
    """
    Claim a deferred deep link after install.

    Precedence:
    1. token       -> exact match (Android)
    2. fingerprint -> legacy exact match (iOS)
    3. signals     -> IP window + signal scoring (iOS); IP falls back to the
                      server-resolved client address
    """
    if token:
        result = service.claim_by_token(token)
    elif fingerprint:
        result = service.claim_by_fingerprint(fingerprint, app.id)
    else:
        signals = DeviceSignals(
            ip=ip or get_client_ip(request),
            timezone=timezone,
            language=language,
            screen_width=screen_width,
            screen_height=screen_height,
        )
        result = service.claim_by_signals(signals, app.id)

    if result is None:
        raise NotFoundError(LINK_NOT_FOUND)

    return ClaimResponse(
        path=result.path,
        referrer_id=result.referrer_id,
        referral_code=result.referral_code,
    )


@router.get("/debug", response_model=FingerprintDebug)
async def fingerprint_debug(request: Request):
    """Show the fingerprint the server computes for this request (not in production)"""
    if settings.is_production:
        raise NotFoundError()

    client_ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent", "")
    return FingerprintDebug(
        ip=client_ip,
        user_agent=user_agent,
        fingerprint=generate_fingerprint(client_ip, user_agent),
    )


@router.post(
    "/cleanup",
    response_model=CleanupResponse,
    dependencies=[Depends(require_cleanup_key)]
)
async def cleanup_deferred_links(
    request: Request,
    service: DeferredLinkService = Depends(get_deferred_service)
):
    """
    Delete expired and claimed links (for external cron).

    When the in-process sweeper runs, this triggers a full sweep through it
    (links and stale referrals, serialized with scheduled sweeps).
    """
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is not None:
        result = await sweeper.run_once()
        return CleanupResponse(deleted=result.deleted_links)
    return CleanupResponse(deleted=service.cleanup())
