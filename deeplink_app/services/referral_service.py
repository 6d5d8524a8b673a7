from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deeplink_app.clock import utcnow
from deeplink_app.errors import TokenCollisionError
from deeplink_app.models.referral import (
    MILESTONE_COMPLETED,
    MILESTONE_PENDING,
    Referral,
    ReferralStatus,
)
from deeplink_app.services.token_factory import TokenFactory, TokenKind
from deeplink_app.services.token_strategies import TokenStrategy


class ReferralService:
    """
    Referral lifecycle: create, milestone updates, completion, expiry.

    Status only moves pending -> completed or pending -> expired. Milestones
    are free text and independent of status; the well-known ones are
    "pending" (creation), "installed" (set by a referral link claim) and
    "completed" (set by complete()).

    Misses return None; nothing here raises for business rules.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        code_strategy: Optional[TokenStrategy] = None
    ):
        self.db = db
        self.clock = clock
        self.code_strategy = code_strategy or TokenFactory.create_strategy(TokenKind.REFERRAL_CODE)

    def find_pending(self, app_id: int, referrer_id: str) -> Optional[Referral]:
        """Most recent pending referral of this referrer in the app"""
        return self.db.query(Referral).filter(
            Referral.app_id == app_id,
            Referral.referrer_id == referrer_id,
            Referral.status == ReferralStatus.PENDING.value,
        ).order_by(Referral.created_at.desc(), Referral.id.desc()).first()

    def count_active(self, app_id: int, referrer_id: str) -> int:
        """Number of pending referrals, used by callers enforcing a per-app cap"""
        return self.db.query(Referral).filter(
            Referral.app_id == app_id,
            Referral.referrer_id == referrer_id,
            Referral.status == ReferralStatus.PENDING.value,
        ).count()

    def create(
        self,
        app_id: int,
        referrer_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Tuple[Referral, str]:
        """
        Create a referral for a user, or return their pending one.

        Repeated calls while a referral is pending return the same code,
        so clients can call this freely without minting new codes.

        Returns:
            (referral, referral_code)

        Raises:
            TokenCollisionError: The generated code already exists
        """
        existing = self.find_pending(app_id, referrer_id)
        if existing:
            return existing, existing.referral_code

        referral = Referral(
            app_id=app_id,
            referrer_id=referrer_id,
            referral_code=self.code_strategy.generate(),
            status=ReferralStatus.PENDING.value,
            milestone=MILESTONE_PENDING,
            created_at=self.clock(),
            metadata_=metadata,
        )
        self.db.add(referral)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.error("Referral code collision", app_id=app_id)
            raise TokenCollisionError() from exc

        self.db.refresh(referral)
        logger.info(
            "Referral created",
            app_id=app_id,
            referral_id=referral.id,
            referral_code=referral.referral_code,
        )
        return referral, referral.referral_code

    def get_by_code(self, code: str) -> Optional[Referral]:
        if not code:
            return None
        return self.db.query(Referral).filter(Referral.referral_code == code).first()

    def get_referrer_id_by_code(self, code: str) -> Optional[str]:
        referral = self.get_by_code(code)
        return referral.referrer_id if referral else None

    def update_milestone(self, code: str, milestone: str) -> Optional[Referral]:
        """
        Set the milestone of any non-expired referral.

        Returns:
            The updated referral, or None if the code is unknown or expired
        """
        result = self.db.execute(
            update(Referral)
            .where(
                Referral.referral_code == code,
                Referral.status != ReferralStatus.EXPIRED.value,
            )
            .values(milestone=milestone)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return None

        logger.info("Referral milestone updated", referral_code=code, milestone=milestone)
        return self.get_by_code(code)

    def complete(
        self,
        code: str,
        referred_user_id: str,
        milestone: str = MILESTONE_COMPLETED
    ) -> Optional[Referral]:
        """
        Complete a pending referral.

        Conditional on status = pending, so a referral completes at most once.

        Returns:
            The completed referral, or None if not found or not pending
        """
        result = self.db.execute(
            update(Referral)
            .where(
                Referral.referral_code == code,
                Referral.status == ReferralStatus.PENDING.value,
            )
            .values(
                status=ReferralStatus.COMPLETED.value,
                referred_user_id=referred_user_id,
                milestone=milestone or MILESTONE_COMPLETED,
                completed_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return None

        logger.info("Referral completed", referral_code=code, milestone=milestone)
        return self.get_by_code(code)

    def expire_old(self, days_old: int = 30, app_id: Optional[int] = None) -> int:
        """
        Expire pending referrals created more than days_old days ago.

        Args:
            days_old: Age threshold in days
            app_id: Restrict to one app (all apps when None)

        Returns:
            Number of referrals expired
        """
        cutoff = self.clock() - timedelta(days=days_old)
        stmt = (
            update(Referral)
            .where(
                Referral.status == ReferralStatus.PENDING.value,
                Referral.created_at < cutoff,
            )
            .values(status=ReferralStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        if app_id is not None:
            stmt = stmt.where(Referral.app_id == app_id)

        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount
