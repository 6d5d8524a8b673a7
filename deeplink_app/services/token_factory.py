"""
Factory for creating token generation strategies.
Uses caching to avoid creating multiple instances.
"""

from enum import Enum

from loguru import logger

from deeplink_app.config import settings
from deeplink_app.services.token_strategies import (
    REFERRAL_CODE_ALPHABET,
    URL_SAFE_ALPHABET,
    RandomTokenStrategy,
    TokenStrategy,
)

# Referrer tokens below this are flagged at creation time
RECOMMENDED_REFERRER_ENTROPY_BITS = 64


class TokenKind(Enum):
    """Kinds of tokens the service mints"""
    REFERRER_TOKEN = "referrer_token"  # Carried through the install referrer
    REFERRAL_CODE = "referral_code"    # Shared by users, uppercase alphanumeric


class TokenFactory:
    """Factory for creating token strategies with caching"""

    _instances = {}  # Cache for strategy instances

    @classmethod
    def create_strategy(cls, kind: TokenKind = TokenKind.REFERRER_TOKEN) -> TokenStrategy:
        """
        Create or return cached token strategy.

        Args:
            kind: Which token to generate

        Returns:
            A cached instance of a TokenStrategy

        Raises:
            ValueError: If kind is unknown
        """
        if kind in cls._instances:
            return cls._instances[kind]

        if kind == TokenKind.REFERRER_TOKEN:
            instance = RandomTokenStrategy(
                length=settings.referrer_token_length,
                alphabet=URL_SAFE_ALPHABET
            )
            if instance.entropy_bits < RECOMMENDED_REFERRER_ENTROPY_BITS:
                logger.warning(
                    "Referrer token entropy below recommended minimum",
                    bits=round(instance.entropy_bits, 1),
                    recommended=RECOMMENDED_REFERRER_ENTROPY_BITS,
                )
        elif kind == TokenKind.REFERRAL_CODE:
            instance = RandomTokenStrategy(
                length=settings.referral_code_length,
                alphabet=REFERRAL_CODE_ALPHABET
            )
        else:
            raise ValueError(f"Unknown token kind: {kind}")

        cls._instances[kind] = instance
        return instance

    @classmethod
    def clear_instances(cls):
        """Clear cached instances (for testing)"""
        cls._instances = {}
