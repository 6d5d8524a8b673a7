from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String

from deeplink_app.clock import utcnow
from deeplink_app.database.connection import Base


class ReferralStatus(str, Enum):
    """pending -> completed or pending -> expired; both are terminal."""
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Well-known milestones; apps may use any other string in between
MILESTONE_PENDING = "pending"
MILESTONE_INSTALLED = "installed"
MILESTONE_COMPLETED = "completed"


class Referral(Base):
    """User-to-user referral identified by a short uppercase code."""
    __tablename__ = "referrals"
    __table_args__ = (
        Index("ix_referrals_referrer_app", "referrer_id", "app_id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True)
    referrer_id = Column(String, nullable=False)
    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    referred_user_id = Column(String, nullable=True)
    status = Column(String(16), nullable=False, default=ReferralStatus.PENDING.value, index=True)
    milestone = Column(String, nullable=False, default=MILESTONE_PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
