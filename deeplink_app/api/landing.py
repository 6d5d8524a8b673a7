from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request

from deeplink_app.dependencies import (
    get_client_ip,
    get_current_app,
    get_deferred_service,
    get_referral_service,
)
from deeplink_app.errors import NotFoundError
from deeplink_app.models.app import App
from deeplink_app.models.referral import ReferralStatus
from deeplink_app.schemas.deferred import LandingResponse
from deeplink_app.services.deferred_service import DeferredLinkService, build_play_store_url
from deeplink_app.services.referral_service import ReferralService

router = APIRouter(tags=["landing"])


def fill_token(url: Optional[str], token: str) -> Optional[str]:
    """Substitute the {token} placeholder of a fallback URL"""
    if not url:
        return None
    return url.replace("{token}", quote(token, safe=""))


@router.get("/ref/{code}", response_model=LandingResponse, response_model_exclude_none=True)
async def referral_landing(
    code: str,
    request: Request,
    app: App = Depends(get_current_app),
    service: DeferredLinkService = Depends(get_deferred_service),
    referrals: ReferralService = Depends(get_referral_service)
):
    """
    Referral link click.

    Stores a referral-kind deferred link so the install can be tied back to
    the referrer, then returns the landing page data.
    """
    referral = referrals.get_by_code(code)
    if (
        referral is None
        or referral.app_id != app.id
        or referral.status == ReferralStatus.EXPIRED.value
    ):
        raise NotFoundError("This referral link is invalid or has expired")

    link = service.record_referral_click(
        app.id,
        code,
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    play_store_url = None
    if app.android_play_store_url:
        play_store_url = build_play_store_url(app.android_play_store_url, link.referrer_token, code)

    return LandingResponse(
        referrer_token=link.referrer_token,
        deep_link_path=link.deep_link_path,
        play_store_url=play_store_url,
        app_store_url=app.ios_app_store_url,
        web_fallback_url=fill_token(app.web_fallback_url, code),
        referral_code=code,
    )


@router.get("/{prefix}/{token}", response_model=LandingResponse, response_model_exclude_none=True)
async def link_landing(
    prefix: str,
    token: str,
    request: Request,
    app: App = Depends(get_current_app),
    service: DeferredLinkService = Depends(get_deferred_service)
):
    """
    Deep link click for a configured route prefix.

    Stores the deferred link (with IP and legacy fingerprint) and returns
    the data the landing page renders: store URLs carry the referrer token.
    """
    route = app.route_for_prefix(prefix)
    if route is None:
        raise NotFoundError("Invalid link")

    link = service.record_click(
        app.id,
        f"/{prefix}/{token}",
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    play_store_url = None
    if app.android_play_store_url:
        play_store_url = build_play_store_url(app.android_play_store_url, link.referrer_token)

    return LandingResponse(
        referrer_token=link.referrer_token,
        deep_link_path=link.deep_link_path,
        play_store_url=play_store_url,
        app_store_url=app.ios_app_store_url,
        web_fallback_url=fill_token(route.web_fallback_url or app.web_fallback_url, token),
    )
