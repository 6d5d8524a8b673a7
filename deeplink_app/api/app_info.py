from fastapi import APIRouter, Depends

from deeplink_app.dependencies import get_current_app
from deeplink_app.models.app import App
from deeplink_app.schemas.app import AppInfo

router = APIRouter(prefix="/app", tags=["app"])


@router.get("/info", response_model=AppInfo)
async def app_info(app: App = Depends(get_current_app)):
    """Lets an app check which configuration its link domain resolves to"""
    return AppInfo(
        name=app.name,
        slug=app.slug,
        has_ios=bool(app.ios_app_store_url),
        has_android=bool(app.android_play_store_url),
        referral_enabled=app.referral_enabled,
    )
