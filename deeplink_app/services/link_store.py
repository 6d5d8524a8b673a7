"""
Persistent store for deferred deep links.

All writes that decide ownership of a row are conditional UPDATEs whose
rowcount tells the caller whether it won; nothing here does read-then-write.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deeplink_app.clock import utcnow
from deeplink_app.config import settings
from deeplink_app.errors import TokenCollisionError
from deeplink_app.models.deferred_link import DeferredLink, LinkKind
from deeplink_app.services.signals import DeviceSignals, known_address
from deeplink_app.services.token_factory import TokenFactory, TokenKind
from deeplink_app.services.token_strategies import TokenStrategy


class LinkStore:
    """
    CRUD and candidate lookups for DeferredLink rows.

    Every candidate lookup filters to claimable rows (unclaimed and not yet
    expired), so an expired record is never handed to the resolver.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        ttl: Optional[timedelta] = None,
        token_strategy: Optional[TokenStrategy] = None
    ):
        """
        Args:
            db: Database session
            clock: Returns the current naive UTC time
            ttl: Lifetime of a stored link (defaults to settings)
            token_strategy: Referrer token generator (defaults to factory)
        """
        self.db = db
        self.clock = clock
        self.ttl = ttl or timedelta(seconds=settings.deferred_link_ttl_seconds)
        self.token_strategy = token_strategy or TokenFactory.create_strategy(TokenKind.REFERRER_TOKEN)

    def store(
        self,
        app_id: int,
        fingerprint: str,
        deep_link_path: str,
        ip: Optional[str] = None,
        referral_code: Optional[str] = None
    ) -> DeferredLink:
        """
        Store a pending deep link with a fresh referrer token.

        Passing referral_code marks the link as a referral link; its
        deep_link_path is what the app receives on claim.

        Returns:
            The persisted DeferredLink (id and referrer_token populated)

        Raises:
            TokenCollisionError: The generated token already exists
        """
        now = self.clock()
        link = DeferredLink(
            app_id=app_id,
            fingerprint=fingerprint,
            deep_link_path=deep_link_path,
            link_kind=(LinkKind.REFERRAL if referral_code else LinkKind.PLAIN).value,
            referral_code=referral_code,
            referrer_token=self.token_strategy.generate(),
            created_at=now,
            expires_at=now + self.ttl,
            claimed=False,
            ip=known_address(ip),
        )
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.error("Referrer token collision", app_id=app_id)
            raise TokenCollisionError() from exc

        self.db.refresh(link)
        return link

    def patch_signals(self, referrer_token: str, signals: DeviceSignals) -> bool:
        """
        Fill in client-side signals captured after the click.

        Only empty columns are filled; a value captured earlier is never
        overwritten and None never clears anything. Claimed links are left alone.

        Returns:
            True if an unclaimed link with this token exists
        """
        if not referrer_token:
            return False

        # COALESCE(existing, new): keep what we have, fill what we don't
        values = {}
        for column in ("timezone", "language", "screen_width", "screen_height"):
            new_value = getattr(signals, column)
            if new_value is not None:
                values[column] = func.coalesce(getattr(DeferredLink, column), new_value)

        stmt = (
            update(DeferredLink)
            .where(
                DeferredLink.referrer_token == referrer_token,
                DeferredLink.claimed.is_(False),
            )
            .execution_options(synchronize_session=False)
        )
        if values:
            stmt = stmt.values(**values)
        else:
            # Nothing to write; still report whether the token matched
            stmt = stmt.values(referrer_token=DeferredLink.referrer_token)

        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount > 0

    def _claimable(self, query):
        return query.filter(
            DeferredLink.claimed.is_(False),
            DeferredLink.expires_at > self.clock(),
        )

    @staticmethod
    def _newest_first(query):
        return query.order_by(DeferredLink.created_at.desc(), DeferredLink.id.desc())

    def find_by_token(self, token: str) -> Optional[DeferredLink]:
        """Claimable link with this referrer token, if any"""
        if not token:
            return None
        return self._claimable(
            self.db.query(DeferredLink).filter(DeferredLink.referrer_token == token)
        ).first()

    def find_by_ip_window(self, ip: str, app_id: int, window: timedelta) -> List[DeferredLink]:
        """Claimable links for the app from this IP created within window, newest first"""
        if known_address(ip) is None:
            return []
        query = self.db.query(DeferredLink).filter(
            DeferredLink.ip == ip,
            DeferredLink.app_id == app_id,
            DeferredLink.created_at >= self.clock() - window,
        )
        return self._newest_first(self._claimable(query)).all()

    def find_by_fingerprint(self, fingerprint: str, app_id: int) -> List[DeferredLink]:
        """Claimable links for the app with this fingerprint, newest first"""
        if not fingerprint:
            return []
        query = self.db.query(DeferredLink).filter(
            DeferredLink.fingerprint == fingerprint,
            DeferredLink.app_id == app_id,
        )
        return self._newest_first(self._claimable(query)).all()

    def mark_claimed(self, link_id: int) -> bool:
        """
        Compare-and-swap claimed False -> True on a still unexpired link.

        Safe to call on an already claimed or expired link (no error, no change).

        Returns:
            True only for the call that actually flipped the flag
        """
        result = self.db.execute(
            update(DeferredLink)
            .where(
                DeferredLink.id == link_id,
                DeferredLink.claimed.is_(False),
                DeferredLink.expires_at > self.clock(),
            )
            .values(claimed=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def delete_expired_or_claimed(self) -> int:
        """Bulk delete rows that can never be claimed again"""
        result = self.db.execute(
            delete(DeferredLink)
            .where(or_(DeferredLink.expires_at < self.clock(), DeferredLink.claimed.is_(True)))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
