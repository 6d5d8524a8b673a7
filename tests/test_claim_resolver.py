"""
Tests for the claim resolver: token, signal scoring and fingerprint strategies.
"""
from datetime import timedelta

from deeplink_app.services.claim_resolver import ClaimedLink, ClaimResolver, rank_candidates
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.signals import DeviceSignals


class RacingLinkStore(LinkStore):
    """
    Store where a concurrent request claims the best candidate between the
    resolver's read and its compare-and-swap.
    """

    def find_by_token(self, token):
        link = super().find_by_token(token)
        if link is not None:
            super().mark_claimed(link.id)
        return link

    def find_by_ip_window(self, ip, app_id, window):
        candidates = super().find_by_ip_window(ip, app_id, window)
        if candidates:
            super().mark_claimed(candidates[0].id)
        return candidates


class ExpiringLinkStore(LinkStore):
    """Store whose links expire between the resolver's read and its claim"""

    def find_by_token(self, token):
        link = super().find_by_token(token)
        self.clock.advance(hours=25)
        return link


def capture(store, link, **signals):
    store.patch_signals(link.referrer_token, DeviceSignals(**signals))


class TestClaimByToken:
    """Test deterministic token claims"""

    def test_claim_then_miss(self, store, mobile_app):
        link = store.store(mobile_app.id, "abc", "/m/xyz", ip="1.2.2.2")
        resolver = ClaimResolver(store)

        claimed = resolver.claim_by_token(link.referrer_token)

        assert isinstance(claimed, ClaimedLink)
        assert claimed.deep_link_path == "/m/xyz"
        assert claimed.app_id == mobile_app.id
        assert resolver.claim_by_token(link.referrer_token) is None

    def test_at_most_one_success(self, store, mobile_app):
        link = store.store(mobile_app.id, "abc", "/m/xyz")
        resolver = ClaimResolver(store)

        results = [resolver.claim_by_token(link.referrer_token) for _ in range(5)]

        assert len([result for result in results if result is not None]) == 1

    def test_unknown_and_empty_token(self, store, mobile_app):
        resolver = ClaimResolver(store)

        assert resolver.claim_by_token("does-not-exist") is None
        assert resolver.claim_by_token("") is None

    def test_expired_token(self, store, mobile_app, clock):
        link = store.store(mobile_app.id, "abc", "/m/xyz")
        clock.advance(hours=25)

        assert ClaimResolver(store).claim_by_token(link.referrer_token) is None

    def test_lost_race_returns_none(self, db_session, mobile_app, clock):
        store = RacingLinkStore(db_session, clock=clock)
        link = store.store(mobile_app.id, "abc", "/m/xyz")

        assert ClaimResolver(store).claim_by_token(link.referrer_token) is None

    def test_link_expiring_before_claim(self, db_session, mobile_app, clock):
        store = ExpiringLinkStore(db_session, clock=clock)
        link = store.store(mobile_app.id, "abc", "/m/xyz")

        assert ClaimResolver(store).claim_by_token(link.referrer_token) is None


class TestClaimBySignals:
    """Test probabilistic IP window + signal scoring claims"""

    def test_tie_break_on_screen_then_recency(self, store, mobile_app, clock):
        """Both score 2 (timezone and width within tolerance)"""
        older = store.store(mobile_app.id, "f1", "/m/older", ip="9.9.9.9")
        clock.advance(minutes=10)
        newer = store.store(mobile_app.id, "f2", "/m/newer", ip="9.9.9.9")
        capture(store, older, timezone="UTC", screen_width=400)
        capture(store, newer, timezone="UTC", screen_width=405)
        newer_id = newer.id

        claimed = ClaimResolver(store).claim_by_signals(
            DeviceSignals(ip="9.9.9.9", timezone="UTC", screen_width=403), mobile_app.id
        )

        # Both score 2, so the more recent one wins
        assert claimed.id == newer_id
        assert claimed.deep_link_path == "/m/newer"

    def test_higher_score_beats_recency(self, store, mobile_app, clock):
        older = store.store(mobile_app.id, "f1", "/m/older", ip="9.9.9.9")
        clock.advance(minutes=10)
        newer = store.store(mobile_app.id, "f2", "/m/newer", ip="9.9.9.9")
        capture(store, older, timezone="UTC", language="en-US", screen_width=400)
        capture(store, newer, timezone="UTC", language="fr-FR", screen_width=900)

        claimed = ClaimResolver(store).claim_by_signals(
            DeviceSignals(ip="9.9.9.9", timezone="UTC", language="en-US", screen_width=410),
            mobile_app.id,
        )

        assert claimed.deep_link_path == "/m/older"

    def test_low_confidence_fallback_to_most_recent(self, store, mobile_app, clock):
        store.store(mobile_app.id, "f1", "/m/older", ip="9.9.9.9")
        clock.advance(minutes=5)
        store.store(mobile_app.id, "f2", "/m/newer", ip="9.9.9.9")

        claimed = ClaimResolver(store).claim_by_signals(
            DeviceSignals(ip="9.9.9.9", timezone="UTC"), mobile_app.id
        )

        assert claimed.deep_link_path == "/m/newer"

    def test_confident_match_preferred_over_newer_fallback(self, store, mobile_app, clock):
        older = store.store(mobile_app.id, "f1", "/m/older", ip="9.9.9.9")
        clock.advance(minutes=5)
        store.store(mobile_app.id, "f2", "/m/newer", ip="9.9.9.9")
        capture(store, older, timezone="UTC", language="en-US")

        claimed = ClaimResolver(store).claim_by_signals(
            DeviceSignals(ip="9.9.9.9", timezone="UTC", language="en-US"), mobile_app.id
        )

        assert claimed.deep_link_path == "/m/older"

    def test_missing_ip(self, store, mobile_app):
        store.store(mobile_app.id, "f1", "/m/xyz", ip="9.9.9.9")

        assert ClaimResolver(store).claim_by_signals(DeviceSignals(timezone="UTC"), mobile_app.id) is None

    def test_unknown_address_never_matches(self, store, mobile_app):
        store.store(mobile_app.id, "f1", "/m/xyz", ip="unknown")

        assert ClaimResolver(store).claim_by_signals(DeviceSignals(ip="unknown"), mobile_app.id) is None

    def test_no_candidates(self, store, mobile_app, other_app, clock):
        store.store(mobile_app.id, "f1", "/m/too-old", ip="9.9.9.9")
        clock.advance(hours=3)
        store.store(other_app.id, "f1", "/m/other-app", ip="9.9.9.9")
        resolver = ClaimResolver(store)

        assert resolver.claim_by_signals(DeviceSignals(ip="9.9.9.9"), mobile_app.id) is None
        assert resolver.claim_by_signals(DeviceSignals(ip="7.7.7.7"), other_app.id) is None

    def test_window_override(self, store, mobile_app, clock):
        store.store(mobile_app.id, "f1", "/m/xyz", ip="9.9.9.9")
        clock.advance(hours=3)
        resolver = ClaimResolver(store)

        claimed = resolver.claim_by_signals(
            DeviceSignals(ip="9.9.9.9"), mobile_app.id, match_window=timedelta(hours=4)
        )

        assert claimed.deep_link_path == "/m/xyz"

    def test_claimed_once(self, store, mobile_app):
        store.store(mobile_app.id, "f1", "/m/xyz", ip="9.9.9.9")
        resolver = ClaimResolver(store)
        signals = DeviceSignals(ip="9.9.9.9")

        assert resolver.claim_by_signals(signals, mobile_app.id) is not None
        assert resolver.claim_by_signals(signals, mobile_app.id) is None

    def test_lost_race_moves_to_next_candidate(self, db_session, mobile_app, clock):
        store = RacingLinkStore(db_session, clock=clock)
        store.store(mobile_app.id, "f1", "/m/older", ip="9.9.9.9")
        clock.advance(minutes=5)
        store.store(mobile_app.id, "f2", "/m/newer", ip="9.9.9.9")

        claimed = ClaimResolver(store).claim_by_signals(DeviceSignals(ip="9.9.9.9"), mobile_app.id)

        # "/m/newer" went to the concurrent claimer
        assert claimed.deep_link_path == "/m/older"


class TestRankCandidates:
    """Test in-memory candidate ordering"""

    def test_confident_first_then_fallback_by_recency(self, store, mobile_app, clock):
        a = store.store(mobile_app.id, "f", "/a", ip="9.9.9.9")
        clock.advance(minutes=1)
        b = store.store(mobile_app.id, "f", "/b", ip="9.9.9.9")
        clock.advance(minutes=1)
        c = store.store(mobile_app.id, "f", "/c", ip="9.9.9.9")
        capture(store, a, timezone="UTC", language="en")
        capture(store, b, timezone="UTC")

        candidates = store.find_by_ip_window("9.9.9.9", mobile_app.id, timedelta(hours=2))
        ranked = rank_candidates(candidates, DeviceSignals(timezone="UTC", language="en"), 1, 50)

        assert [(link.deep_link_path, score) for link, score in ranked] == [
            ("/a", 2),
            ("/b", 1),
            ("/c", 0),
        ]


class TestClaimByFingerprint:
    """Test legacy fingerprint claims"""

    def test_most_recent_wins(self, store, mobile_app, clock):
        store.store(mobile_app.id, "abc", "/m/first")
        clock.advance(minutes=1)
        store.store(mobile_app.id, "abc", "/m/second")
        resolver = ClaimResolver(store)

        assert resolver.claim_by_fingerprint("abc", mobile_app.id).deep_link_path == "/m/second"
        assert resolver.claim_by_fingerprint("abc", mobile_app.id).deep_link_path == "/m/first"
        assert resolver.claim_by_fingerprint("abc", mobile_app.id) is None

    def test_unknown_fingerprint(self, store, mobile_app):
        store.store(mobile_app.id, "abc", "/m/first")

        assert ClaimResolver(store).claim_by_fingerprint("def", mobile_app.id) is None
