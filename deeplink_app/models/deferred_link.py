from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from deeplink_app.database.connection import Base


class LinkKind(str, Enum):
    """What a deferred link points at, decided when it is stored."""
    PLAIN = "plain"
    REFERRAL = "referral"


class DeferredLink(Base):
    """
    A pending deep link waiting for the app to be installed.

    Claimable iff claimed is False and expires_at is in the future.
    Once claimed the row is never modified again, only deleted by the sweeper.

    referrer_token is unique; fingerprint is not (several visits from the same
    network hash to the same value, which is why claims need a matcher).
    """
    __tablename__ = "deferred_links"
    __table_args__ = (
        Index("ix_deferred_links_fingerprint_app", "fingerprint", "app_id"),
        Index("ix_deferred_links_ip_app_created", "ip", "app_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    fingerprint = Column(String(64), nullable=False)
    deep_link_path = Column(String, nullable=False)
    link_kind = Column(String(16), nullable=False, default=LinkKind.PLAIN.value)
    referral_code = Column(String(32), nullable=True)  # Set only for LinkKind.REFERRAL
    # Note: unique=True automatically creates an index
    referrer_token = Column(String(32), unique=True, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    claimed = Column(Boolean, nullable=False, default=False)

    # Signals: ip at click time, the rest patched in by the landing page
    ip = Column(String(45), nullable=True)
    timezone = Column(String(64), nullable=True)
    language = Column(String(35), nullable=True)
    screen_width = Column(Integer, nullable=True)
    screen_height = Column(Integer, nullable=True)

    @property
    def is_referral(self) -> bool:
        return self.link_kind == LinkKind.REFERRAL.value and bool(self.referral_code)

    def __repr__(self) -> str:
        return (
            f"<DeferredLink id={self.id} app_id={self.app_id} "
            f"path={self.deep_link_path!r} claimed={self.claimed}>"
        )
