"""
Factory for creating cache instances.
Simple, clean factory with singleton caching.
"""

from enum import Enum

from loguru import logger

from .strategies import CacheStrategy, InMemoryCache, NullCache, RedisCache
from deeplink_app.config import settings


class CacheBackend(Enum):
    """Available cache backends"""
    REDIS = "redis"
    MEMORY = "memory"
    NULL = "null"


class CacheFactory:
    """
    Simple factory for creating cache instances.

    Uses Singleton Pattern - creates instance once, reuses it.
    Gets configuration from settings (not passed as parameters).
    """

    _instance: CacheStrategy = None  # Single cached instance

    @classmethod
    def create(cls, backend: CacheBackend) -> CacheStrategy:
        """
        Create or return cached cache instance.

        Args:
            backend: Type of cache backend (from enum)

        Returns:
            Singleton cache instance
        """
        if cls._instance is not None:
            return cls._instance

        if backend == CacheBackend.REDIS:
            import redis

            try:
                redis_client = redis.from_url(
                    settings.redis_url,
                    decode_responses=False,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )

                # Test connection immediately
                redis_client.ping()

                cls._instance = RedisCache(redis_client, default_ttl=settings.cache_ttl)
                logger.info("Redis cache initialized")

            except redis.RedisError as e:
                logger.warning("Redis connection failed, falling back to in-memory cache: {}", e)
                cls._instance = InMemoryCache(default_ttl=settings.cache_ttl)

        elif backend == CacheBackend.MEMORY:
            cls._instance = InMemoryCache(default_ttl=settings.cache_ttl)
            logger.info("In-memory cache initialized")

        elif backend == CacheBackend.NULL:
            cls._instance = NullCache(default_ttl=settings.cache_ttl)
            logger.info("Null cache initialized")

        else:
            raise ValueError(f"Unknown cache backend: {backend}")

        return cls._instance

    @classmethod
    def clear_instance(cls):
        """Clear cached instance (for testing)"""
        cls._instance = None
