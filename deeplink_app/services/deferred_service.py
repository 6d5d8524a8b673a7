from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from deeplink_app.models.deferred_link import DeferredLink
from deeplink_app.models.referral import MILESTONE_INSTALLED
from deeplink_app.services.claim_resolver import ClaimedLink, ClaimResolver
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.referral_service import ReferralService
from deeplink_app.services.signals import DeviceSignals, generate_fingerprint


class ClaimStrategy(Enum):
    """How a claim was matched"""
    TOKEN = "token"
    SIGNALS = "signals"
    FINGERPRINT = "fingerprint"


@dataclass
class ClaimResult:
    """What a successful claim hands back to the app"""
    path: str
    strategy: ClaimStrategy
    link_id: int
    referrer_id: Optional[str] = None
    referral_code: Optional[str] = None


def referral_path(code: str) -> str:
    return f"/referral/{code}"


def build_play_store_url(base_url: str, referrer_token: str, referral_code: Optional[str] = None) -> str:
    """
    Add the install referrer to a Play Store URL.

    The referrer value is "ul_token=<token>" (plus "&ref=<code>" for referral
    links); it is URL-encoded into the referrer query parameter.
    """
    referrer_value = f"ul_token={referrer_token}"
    if referral_code:
        referrer_value += f"&ref={referral_code}"

    parts = urlsplit(base_url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != "referrer"]
    query.append(("referrer", referrer_value))
    return urlunsplit(parts._replace(query=urlencode(query)))


class DeferredLinkService:
    """
    Deferred deep link flows: click, signal capture, claim, cleanup.

    Wires the LinkStore and ClaimResolver together and owns the one coupling
    between links and referrals: claiming a referral link by token bumps the
    referral's milestone to "installed".
    """

    def __init__(
        self,
        store: LinkStore,
        referrals: Optional[ReferralService] = None,
        resolver: Optional[ClaimResolver] = None
    ):
        self.store = store
        self.referrals = referrals
        self.resolver = resolver or ClaimResolver(store)

    def record_click(
        self,
        app_id: int,
        deep_link_path: str,
        ip: Optional[str],
        user_agent: Optional[str],
        referral_code: Optional[str] = None
    ) -> DeferredLink:
        """
        Store a pending link for a click coming from a browser.

        An unresolvable address is stored as no IP, so the link can only be
        claimed by token or fingerprint.
        """
        fingerprint = generate_fingerprint(ip, user_agent)
        link = self.store.store(
            app_id,
            fingerprint,
            deep_link_path,
            ip=ip,
            referral_code=referral_code,
        )
        logger.info(
            "Deferred link stored",
            app_id=app_id,
            link_id=link.id,
            path=deep_link_path,
            kind=link.link_kind,
        )
        return link

    def record_referral_click(self, app_id: int, code: str, ip: Optional[str], user_agent: Optional[str]) -> DeferredLink:
        return self.record_click(app_id, referral_path(code), ip, user_agent, referral_code=code)

    def capture_signals(self, referrer_token: str, signals: DeviceSignals) -> bool:
        return self.store.patch_signals(referrer_token, signals)

    def claim_by_token(self, token: str) -> Optional[ClaimResult]:
        link = self.resolver.claim_by_token(token)
        if link is None:
            return None

        result = self._result(link, ClaimStrategy.TOKEN)
        if link.is_referral:
            self._attach_referral(result, link.referral_code)
        return result

    def claim_by_signals(self, signals: DeviceSignals, app_id: int) -> Optional[ClaimResult]:
        link = self.resolver.claim_by_signals(signals, app_id)
        return self._result(link, ClaimStrategy.SIGNALS) if link else None

    def claim_by_fingerprint(self, fingerprint: str, app_id: int) -> Optional[ClaimResult]:
        link = self.resolver.claim_by_fingerprint(fingerprint, app_id)
        return self._result(link, ClaimStrategy.FINGERPRINT) if link else None

    def cleanup(self) -> int:
        deleted = self.store.delete_expired_or_claimed()
        logger.info("Deferred link cleanup", deleted=deleted)
        return deleted

    @staticmethod
    def _result(link: ClaimedLink, strategy: ClaimStrategy) -> ClaimResult:
        logger.info(
            "Deferred link claimed",
            link_id=link.id,
            app_id=link.app_id,
            strategy=strategy.value,
        )
        return ClaimResult(path=link.deep_link_path, strategy=strategy, link_id=link.id)

    def _attach_referral(self, result: ClaimResult, code: str) -> None:
        """
        Mark the referral as installed and surface it on the claim.

        The claim has already succeeded at this point, so an unknown code or a
        storage failure only drops the referral fields.
        """
        if self.referrals is None:
            return

        try:
            referrer_id = self.referrals.get_referrer_id_by_code(code)
            if referrer_id is None:
                logger.warning("Claimed referral link with unknown code", referral_code=code)
                return
            self.referrals.update_milestone(code, MILESTONE_INSTALLED)
        except SQLAlchemyError:
            self.referrals.db.rollback()
            logger.exception("Referral milestone update failed", referral_code=code)
            return

        result.referrer_id = referrer_id
        result.referral_code = code
