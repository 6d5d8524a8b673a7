"""
Error taxonomy for the HTTP boundary.

Services never raise these for business-rule misses; they return None/False
and the routers translate. Every error renders as {"success": false, "error": ...}.
"""

from fastapi import status


class DeeplinkError(Exception):
    """Base error carrying the HTTP status and the caller-visible message."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(DeeplinkError):
    """Unknown, expired or already-claimed token, fingerprint or code."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(DeeplinkError):
    """Missing or malformed request fields."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthError(DeeplinkError):
    """Invalid or missing API/cleanup key. Message stays generic."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class ConfigurationError(DeeplinkError):
    """A business rule configured for the app rejected the request."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request not allowed by app configuration"


class ReferralsDisabledError(ConfigurationError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Referrals are not enabled for this app"


class TokenCollisionError(ConfigurationError):
    """A freshly generated token already exists. Token entropy is too low."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Token collision, check token length configuration"


class TransientStorageError(DeeplinkError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Storage temporarily unavailable"
