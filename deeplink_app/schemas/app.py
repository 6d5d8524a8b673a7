from pydantic import BaseModel


class AppInfo(BaseModel):
    """Safe subset of an app's configuration"""
    name: str
    slug: str
    has_ios: bool
    has_android: bool
    referral_enabled: bool
