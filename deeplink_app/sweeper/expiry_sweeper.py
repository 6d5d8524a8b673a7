"""
Expiry Sweeper

Background reclamation of rows that can no longer be claimed:
- deletes deferred links that are expired or already claimed
- expires pending referrals older than their app's referral_expiration_days

Architecture:
- One sweep at startup, then one every interval
- Sweeps run to completion before the next one starts (never overlap)
- Each sweep uses its own database session
- Only unclaimable rows match the delete predicate, so in-flight claims are safe
"""

import asyncio
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from deeplink_app.clock import utcnow
from deeplink_app.config import settings
from deeplink_app.database.connection import SessionLocal
from deeplink_app.models.app import App
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.referral_service import ReferralService


@dataclass
class SweepResult:
    deleted_links: int = 0
    expired_referrals: int = 0


class ExpirySweeper:
    """
    Periodic cleanup worker.

    Features:
    - Startup sweep, then fixed interval
    - asyncio.Lock so the cleanup endpoint never overlaps a scheduled sweep
    - Database work runs in a thread to keep the event loop responsive
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        interval_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Args:
            session_factory: Factory for creating database sessions
            interval_seconds: Seconds between sweeps (defaults to settings)
            clock: Current naive UTC time
        """
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.sweeper_interval_seconds
        self.clock = clock
        self.running = False
        self.sweep_count = 0
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    async def start(self):
        """Run the sweep loop until stop() is called"""
        self.running = True
        self._stop_event.clear()
        logger.info("Expiry sweeper started", interval_seconds=self.interval_seconds)

        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Sweeper task cancelled")
                break
            except Exception:
                # Keep the loop alive; the next tick retries
                logger.exception("Sweep failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.running = False
        logger.info("Expiry sweeper stopped", sweeps=self.sweep_count)

    async def run_once(self) -> SweepResult:
        """Run one sweep, waiting for any sweep already in progress"""
        async with self._lock:
            result = await asyncio.to_thread(self._sweep)
            self.sweep_count += 1
            logger.info(
                "Sweep finished",
                deleted_links=result.deleted_links,
                expired_referrals=result.expired_referrals,
            )
            return result

    def _sweep(self) -> SweepResult:
        """Synchronous sweep body (one session, several short transactions)"""
        db = self.session_factory()
        try:
            result = SweepResult()
            result.deleted_links = LinkStore(db, clock=self.clock).delete_expired_or_claimed()

            referrals = ReferralService(db, clock=self.clock)
            for app_id, days in db.query(App.id, App.referral_expiration_days).all():
                result.expired_referrals += referrals.expire_old(
                    days or settings.referral_expiration_days,
                    app_id=app_id,
                )
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def stop(self):
        """Stop the sweeper after the current sweep"""
        self.running = False
        self._stop_event.set()

    def _signal_handler(self, signum, frame):
        """Handle signals for graceful shutdown"""
        logger.info("Received signal {}, shutting down", signum)
        self.stop()


async def main():
    """
    Run the sweeper as a standalone process (e.g. when the API runs with
    SWEEPER_ENABLED=false on several replicas).

    Usage:
        python -m deeplink_app.sweeper.expiry_sweeper
    """
    from deeplink_app.database.connection import Base, engine
    from deeplink_app.logging_config import configure_logging

    configure_logging()
    Base.metadata.create_all(bind=engine)

    sweeper = ExpirySweeper()
    signal.signal(signal.SIGINT, sweeper._signal_handler)
    signal.signal(signal.SIGTERM, sweeper._signal_handler)

    try:
        await sweeper.start()
    except Exception:
        logger.exception("Fatal sweeper error")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
