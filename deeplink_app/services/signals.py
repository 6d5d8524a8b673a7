"""
Device/network signals used to match an app install back to a link click.

Everything here is pure: no database, no settings lookups at call time.
"""

import hashlib
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_SIGNAL_SCORE = 4
DEFAULT_SCREEN_TOLERANCE = 50
UNKNOWN_ADDRESS = "unknown"


class DeviceSignals(BaseModel):
    """
    Snapshot of the signals a device exposes.

    Used both for what was stored at click time and for what the app
    reports at claim time. Only ip is required for signal matching.
    """

    ip: Optional[str] = Field(None, description="Client IP address")
    timezone: Optional[str] = Field(None, description="IANA timezone, e.g. Europe/Berlin")
    language: Optional[str] = Field(None, description="Locale string, e.g. en-US")
    screen_width: Optional[int] = Field(None, ge=0, description="Screen width in px")
    screen_height: Optional[int] = Field(None, ge=0, description="Screen height in px")

    model_config = ConfigDict(from_attributes=True)

    def has_client_signals(self) -> bool:
        """True if anything beyond the IP was captured."""
        return any(
            value is not None
            for value in (self.timezone, self.language, self.screen_width, self.screen_height)
        )


def _within(a: Optional[int], b: Optional[int], tolerance: int) -> bool:
    return a is not None and b is not None and abs(a - b) <= tolerance


def _equal(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a == b


def score_signals(
    stored: DeviceSignals,
    claimed: DeviceSignals,
    tolerance: int = DEFAULT_SCREEN_TOLERANCE
) -> int:
    """
    Score how similar two signal snapshots are.

    +1 each for: equal timezone, equal language, screen width within
    tolerance, screen height within tolerance (both inclusive). A field
    missing on either side scores 0 for that dimension.

    Returns:
        Integer between 0 and MAX_SIGNAL_SCORE
    """
    score = 0
    if _equal(stored.timezone, claimed.timezone):
        score += 1
    if _equal(stored.language, claimed.language):
        score += 1
    if _within(stored.screen_width, claimed.screen_width, tolerance):
        score += 1
    if _within(stored.screen_height, claimed.screen_height, tolerance):
        score += 1
    return score


def generate_fingerprint(ip: str, user_agent: str) -> str:
    """
    Legacy fingerprint: sha256 of "ip|user-agent".

    Weak by nature (browser and app user agents differ, IPs change between
    networks); kept for clients that still claim by fingerprint.
    """
    data = f"{ip or ''}|{user_agent or ''}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def known_address(address: Optional[str]) -> Optional[str]:
    """The address, or None when it is empty or the "unknown" placeholder"""
    if not address or address == UNKNOWN_ADDRESS:
        return None
    return address


def resolve_client_address(
    headers: Mapping[str, str],
    socket_address: Optional[str],
    trust_proxy: bool = False
) -> str:
    """
    Resolve the originating client address of a request.

    Precedence when trust_proxy is set:
    X-Forwarded-For (first entry) -> X-Real-IP -> socket address.
    Without a trusted proxy the headers are client-controlled and ignored.

    Args:
        headers: Request headers (case-insensitive mapping, e.g. Starlette Headers)
        socket_address: Peer address of the TCP connection, if known
        trust_proxy: Whether the deployment sits behind a trusted proxy

    Returns:
        The address string, or "unknown"
    """
    if trust_proxy:
        forwarded_for = headers.get("x-forwarded-for")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first

        real_ip = headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    return socket_address or UNKNOWN_ADDRESS
