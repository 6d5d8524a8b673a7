"""
Tests for the deferred link flows and the referral side effect of claims.
"""
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy.exc import OperationalError

from deeplink_app.services.deferred_service import (
    ClaimStrategy,
    DeferredLinkService,
    build_play_store_url,
    referral_path,
)
from deeplink_app.services.signals import DeviceSignals, generate_fingerprint


@pytest.fixture
def service(store, referrals):
    return DeferredLinkService(store=store, referrals=referrals)


class TestRecordClick:
    """Test click recording"""

    def test_record_click_stores_fingerprint_and_ip(self, service, mobile_app):
        link = service.record_click(mobile_app.id, "/m/xyz", ip="1.2.2.2", user_agent="Safari")

        assert link.fingerprint == generate_fingerprint("1.2.2.2", "Safari")
        assert link.ip == "1.2.2.2"
        assert link.deep_link_path == "/m/xyz"

    def test_record_referral_click(self, service, mobile_app):
        link = service.record_referral_click(mobile_app.id, "C1", ip="1.2.2.2", user_agent="Safari")

        assert link.deep_link_path == referral_path("C1") == "/referral/C1"
        assert link.referral_code == "C1"
        assert link.is_referral is True


class TestClaims:
    """Test claims through the service"""

    def test_claim_by_token(self, service, mobile_app):
        link = service.record_click(mobile_app.id, "/m/xyz", ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_token(link.referrer_token)

        assert result.path == "/m/xyz"
        assert result.strategy == ClaimStrategy.TOKEN
        assert result.referrer_id is None
        assert result.referral_code is None
        assert service.claim_by_token(link.referrer_token) is None

    def test_claim_by_signals_after_capture(self, service, mobile_app):
        link = service.record_click(mobile_app.id, "/m/xyz", ip="1.2.2.2", user_agent="Safari")
        assert service.capture_signals(link.referrer_token, DeviceSignals(timezone="UTC", language="en"))

        result = service.claim_by_signals(
            DeviceSignals(ip="1.2.2.2", timezone="UTC", language="en"), mobile_app.id
        )

        assert result.path == "/m/xyz"
        assert result.strategy == ClaimStrategy.SIGNALS

    def test_claim_by_fingerprint(self, service, mobile_app):
        service.record_click(mobile_app.id, "/m/xyz", ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_fingerprint(generate_fingerprint("1.2.2.2", "Safari"), mobile_app.id)

        assert result.path == "/m/xyz"
        assert result.strategy == ClaimStrategy.FINGERPRINT

    def test_cleanup(self, service, mobile_app, clock):
        service.record_click(mobile_app.id, "/m/old", ip="1.2.2.2", user_agent="Safari")
        clock.advance(hours=25)
        service.record_click(mobile_app.id, "/m/new", ip="1.2.2.2", user_agent="Safari")

        assert service.cleanup() == 1


class TestReferralClaims:
    """Test the referral milestone side effect"""

    def test_token_claim_of_referral_link(self, service, referrals, mobile_app):
        _, code = referrals.create(mobile_app.id, "U1")
        link = service.record_referral_click(mobile_app.id, code, ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_token(link.referrer_token)

        assert result.path == f"/referral/{code}"
        assert result.referrer_id == "U1"
        assert result.referral_code == code
        assert referrals.get_by_code(code).milestone == "installed"

    def test_unknown_referral_code_still_claims(self, service, mobile_app):
        link = service.record_referral_click(mobile_app.id, "NOPE", ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_token(link.referrer_token)

        assert result.path == "/referral/NOPE"
        assert result.referrer_id is None
        assert result.referral_code is None

    def test_signal_claim_has_no_referral_side_effect(self, service, referrals, mobile_app):
        _, code = referrals.create(mobile_app.id, "U1")
        service.record_referral_click(mobile_app.id, code, ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_signals(DeviceSignals(ip="1.2.2.2"), mobile_app.id)

        assert result.path == f"/referral/{code}"
        assert result.referrer_id is None
        assert referrals.get_by_code(code).milestone == "pending"

    def test_referral_failure_does_not_undo_claim(self, service, referrals, mobile_app, monkeypatch):
        _, code = referrals.create(mobile_app.id, "U1")
        link = service.record_referral_click(mobile_app.id, code, ip="1.2.2.2", user_agent="Safari")
        token = link.referrer_token

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE referrals", {}, Exception("database is locked"))

        monkeypatch.setattr(referrals, "update_milestone", broken)

        result = service.claim_by_token(token)

        assert result.path == f"/referral/{code}"
        assert result.referrer_id is None
        assert service.claim_by_token(token) is None

    def test_without_referral_service(self, store, mobile_app):
        service = DeferredLinkService(store=store)
        link = service.record_referral_click(mobile_app.id, "C1", ip="1.2.2.2", user_agent="Safari")

        result = service.claim_by_token(link.referrer_token)

        assert result.path == "/referral/C1"
        assert result.referrer_id is None


class TestPlayStoreUrl:
    """Test install referrer URL building"""

    def test_adds_referrer(self):
        url = build_play_store_url("https://play.google.com/store/apps/details?id=com.app", "tok123")

        query = parse_qs(urlsplit(url).query)
        assert query["id"] == ["com.app"]
        assert query["referrer"] == ["ul_token=tok123"]

    def test_referral_code_included(self):
        url = build_play_store_url("https://play.google.com/store/apps/details?id=com.app", "tok123", "C1")

        assert parse_qs(urlsplit(url).query)["referrer"] == ["ul_token=tok123&ref=C1"]
        assert "referrer=ul_token%3Dtok123%26ref%3DC1" in url

    def test_replaces_existing_referrer(self):
        url = build_play_store_url("https://play.google.com/store/apps/details?id=com.app&referrer=old", "tok")

        assert parse_qs(urlsplit(url).query)["referrer"] == ["ul_token=tok"]
