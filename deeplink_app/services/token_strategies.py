"""
Token generation strategies.
Uses Strategy Pattern so referrer tokens and referral codes share one generator shape.
"""

import math
import secrets
import string
from abc import ABC, abstractmethod


URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "-_"
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


class TokenStrategy(ABC):
    """Abstract base class for token generation strategies"""

    @abstractmethod
    def generate(self) -> str:
        """
        Generate a new token.

        Uniqueness is enforced by the database (unique column); a strategy
        only has to provide enough entropy for collisions to be negligible.
        """
        pass

    @property
    @abstractmethod
    def entropy_bits(self) -> float:
        """Effective entropy of a single token"""
        pass


class RandomTokenStrategy(TokenStrategy):
    """
    Random token drawn from an alphabet with a CSPRNG.

    Pros: Unpredictable, no DB round-trip
    Cons: Relies on entropy; a collision is treated as a configuration error
    """

    def __init__(self, length: int = 16, alphabet: str = URL_SAFE_ALPHABET):
        if length <= 0:
            raise ValueError(f"Token length must be positive, got {length}")
        if len(set(alphabet)) < 2:
            raise ValueError("Token alphabet needs at least two distinct characters")
        self.length = length
        self.alphabet = alphabet

    def generate(self) -> str:
        return ''.join(secrets.choice(self.alphabet) for _ in range(self.length))

    @property
    def entropy_bits(self) -> float:
        return self.length * math.log2(len(set(self.alphabet)))
