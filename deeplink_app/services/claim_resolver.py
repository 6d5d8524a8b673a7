"""
Claim resolver: turns an install-time claim into at most one deferred link.

Strategies:
- token:        exact referrer-token lookup (Android install referrer)
- signals:      same IP + app + time window, then score device signals (iOS)
- fingerprint:  legacy sha256(ip|ua) lookup, most recent wins

Each strategy reads candidates, picks in memory, then claims with a
compare-and-swap. Losing the swap to a concurrent claim moves on to the next
candidate instead of returning a link someone else already owns.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from loguru import logger

from deeplink_app.config import settings
from deeplink_app.models.deferred_link import DeferredLink, LinkKind
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.signals import DeviceSignals, known_address, score_signals


@dataclass(frozen=True)
class ClaimedLink:
    """
    Snapshot of a link taken before it was claimed.

    The row itself is deleted by the sweeper soon after; callers only ever
    see this copy.
    """
    id: int
    app_id: int
    deep_link_path: str
    link_kind: str
    referral_code: Optional[str]
    created_at: datetime

    @classmethod
    def from_model(cls, link: DeferredLink) -> "ClaimedLink":
        return cls(
            id=link.id,
            app_id=link.app_id,
            deep_link_path=link.deep_link_path,
            link_kind=link.link_kind,
            referral_code=link.referral_code,
            created_at=link.created_at,
        )

    @property
    def is_referral(self) -> bool:
        return self.link_kind == LinkKind.REFERRAL.value and bool(self.referral_code)


def stored_signals(link: DeferredLink) -> DeviceSignals:
    return DeviceSignals(
        ip=link.ip,
        timezone=link.timezone,
        language=link.language,
        screen_width=link.screen_width,
        screen_height=link.screen_height,
    )


def rank_candidates(
    candidates: List[DeferredLink],
    claimed: DeviceSignals,
    min_score: int,
    tolerance: int
) -> List[Tuple[DeferredLink, int]]:
    """
    Order candidates by claim preference.

    Candidates must already be newest first. Confident matches
    (score >= min_score) come first, best score then most recent; the
    remainder follows in recency order as the low-confidence fallback.
    """
    scored = [(link, score_signals(stored_signals(link), claimed, tolerance)) for link in candidates]

    confident = [(i, link, score) for i, (link, score) in enumerate(scored) if score >= min_score]
    # Lower index = newer, so sort by (-score, index)
    confident.sort(key=lambda item: (-item[2], item[0]))
    confident_ids = {link.id for _, link, _ in confident}

    ranked = [(link, score) for _, link, score in confident]
    ranked.extend((link, score) for link, score in scored if link.id not in confident_ids)
    return ranked


class ClaimResolver:
    """
    Matching algorithm over a LinkStore.

    Returns None for every kind of miss (unknown, expired, already claimed,
    no candidates, missing IP); the HTTP layer maps that to 404.
    """

    def __init__(
        self,
        store: LinkStore,
        match_window: Optional[timedelta] = None,
        min_score: Optional[int] = None,
        screen_tolerance: Optional[int] = None
    ):
        self.store = store
        self.match_window = match_window or timedelta(seconds=settings.deferred_match_window_seconds)
        self.min_score = settings.deferred_min_score if min_score is None else min_score
        self.screen_tolerance = (
            settings.screen_tolerance_px if screen_tolerance is None else screen_tolerance
        )

    def _claim_first(self, candidates: Iterable[DeferredLink]) -> Optional[ClaimedLink]:
        """Claim the first candidate whose compare-and-swap succeeds"""
        # Snapshot up front: each successful swap commits and expires loaded rows
        snapshots = [ClaimedLink.from_model(link) for link in candidates]
        for snapshot in snapshots:
            if self.store.mark_claimed(snapshot.id):
                return snapshot
            logger.info("Lost claim race, trying next candidate", link_id=snapshot.id)
        return None

    def claim_by_token(self, token: str) -> Optional[ClaimedLink]:
        """Deterministic claim by referrer token"""
        link = self.store.find_by_token(token)
        if link is None:
            return None
        return self._claim_first([link])

    def claim_by_signals(
        self,
        signals: DeviceSignals,
        app_id: int,
        match_window: Optional[timedelta] = None,
        min_score: Optional[int] = None
    ) -> Optional[ClaimedLink]:
        """
        Probabilistic claim by IP window + device signal score.

        A known IP is a hard prerequisite. If no candidate reaches min_score the most
        recent candidate is claimed anyway (low-confidence fallback).
        """
        ip = known_address(signals.ip)
        if ip is None:
            return None

        window = match_window or self.match_window
        threshold = self.min_score if min_score is None else min_score

        candidates = self.store.find_by_ip_window(ip, app_id, window)
        if not candidates:
            return None

        ranked = [
            (ClaimedLink.from_model(link), score)
            for link, score in rank_candidates(candidates, signals, threshold, self.screen_tolerance)
        ]

        for snapshot, score in ranked:
            if self.store.mark_claimed(snapshot.id):
                logger.info(
                    "Claimed deferred link by signals",
                    link_id=snapshot.id,
                    app_id=app_id,
                    score=score,
                    candidates=len(candidates),
                    fallback=score < threshold,
                )
                return snapshot
            logger.info("Lost claim race, trying next candidate", link_id=snapshot.id)

        return None

    def claim_by_fingerprint(self, fingerprint: str, app_id: int) -> Optional[ClaimedLink]:
        """
        Legacy claim by exact fingerprint, most recent first, no scoring.
        New integrations should use claim_by_signals.
        """
        return self._claim_first(self.store.find_by_fingerprint(fingerprint, app_id))
