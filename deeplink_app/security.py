"""
Static-key authentication for server-to-server endpoints.

API key: checked from X-API-Key, then Authorization: Bearer, then the
api_key query parameter. Disabled entirely when API_KEY is not configured.

Cleanup key: X-Cleanup-Key must match CLEANUP_KEY; always rejected when
CLEANUP_KEY is not configured.
"""

import hmac
from typing import List, Optional

from fastapi import Request
from loguru import logger

from deeplink_app.config import settings
from deeplink_app.errors import AuthError

BEARER_PREFIX = "Bearer "


def _matches(candidate: Optional[str], expected: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode(), expected.encode())


def presented_api_keys(request: Request) -> List[str]:
    """API keys presented by the request, in precedence order"""
    keys = []

    header_key = request.headers.get("x-api-key")
    if header_key:
        keys.append(header_key)

    authorization = request.headers.get("authorization", "")
    if authorization.startswith(BEARER_PREFIX):
        keys.append(authorization[len(BEARER_PREFIX):])

    query_key = request.query_params.get("api_key")
    if query_key:
        keys.append(query_key)

    return keys


async def require_api_key(request: Request) -> None:
    """FastAPI dependency: reject the request unless a valid API key is present"""
    expected = settings.api_key
    if not expected:
        return

    if any(_matches(key, expected) for key in presented_api_keys(request)):
        return

    logger.warning("Rejected request with invalid API key", path=request.url.path)
    raise AuthError(
        "Unauthorized. Provide a valid API key via X-API-Key header, "
        "Authorization: Bearer header, or api_key query parameter."
    )


async def require_cleanup_key(request: Request) -> None:
    """FastAPI dependency guarding the cleanup trigger"""
    expected = settings.cleanup_key
    if not expected or not _matches(request.headers.get("x-cleanup-key"), expected):
        logger.warning("Rejected cleanup request")
        raise AuthError()
