from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class SignalCapture(BaseModel):
    """Signals posted by the landing page after the click"""
    referrer_token: str = Field(..., min_length=1, description="Token minted when the link was stored")
    timezone: Optional[str] = Field(None, max_length=64)
    language: Optional[str] = Field(None, max_length=35)
    screen_width: Optional[int] = Field(None, ge=0)
    screen_height: Optional[int] = Field(None, ge=0)


class SuccessResponse(BaseModel):
    success: bool


class ClaimResponse(BaseModel):
    """
    Successful claim.

    referrer_id/referral_code are only present for referral links
    (serialize with exclude_none).
    """
    success: bool = True
    path: str
    referrer_id: Optional[str] = None
    referral_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int


class LandingResponse(BaseModel):
    """
    What the landing page needs after a click was stored.

    HTML rendering happens elsewhere; this is its data.
    """
    success: bool = True
    referrer_token: str
    deep_link_path: str
    play_store_url: Optional[str] = None
    app_store_url: Optional[str] = None
    web_fallback_url: Optional[str] = None
    referral_code: Optional[str] = None


class FingerprintDebug(BaseModel):
    ip: str
    user_agent: str
    fingerprint: str
