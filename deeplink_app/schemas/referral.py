from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ReferralCreate(BaseModel):
    user_id: str = Field(..., min_length=1, description="Referrer's id in the calling app")
    metadata: Optional[Dict[str, Any]] = None


class MilestoneUpdate(BaseModel):
    referral_code: str = Field(..., min_length=1)
    milestone: str = Field(..., min_length=1)


class ReferralComplete(BaseModel):
    referral_code: str = Field(..., min_length=1)
    referred_user_id: str = Field(..., min_length=1)
    milestone: Optional[str] = Field(None, min_length=1)


class ReferralCreated(BaseModel):
    success: bool = True
    referral_code: str
    referral_url: str
    referral_id: int


class ReferralOut(BaseModel):
    """Full referral, returned to authenticated callers"""
    id: int
    referral_code: str
    referrer_id: str
    referred_user_id: Optional[str] = None
    status: str
    milestone: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))

    model_config = ConfigDict(from_attributes=True)


class ReferralPublic(BaseModel):
    """Public view of a referral code"""
    referrer_id: str
    status: str
    milestone: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralEnvelope(BaseModel):
    success: bool = True
    referral: ReferralOut


class ReferralPublicEnvelope(BaseModel):
    success: bool = True
    referral: ReferralPublic
