"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from loguru import logger


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    Constructed once at startup (see CacheFactory) and injected where needed;
    the default TTL comes from settings and can be overridden per call.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache with TTL (Time To Live).

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (default: the cache's default_ttl)

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache. True if it existed."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all cache entries."""
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation.

    Shared between processes, so every worker sees the same host -> app mapping.
    Errors are logged and treated as cache misses; the database stays the
    source of truth.
    """

    def __init__(self, redis_client, default_ttl: int = 300, prefix: str = "deeplink:"):
        """
        Args:
            redis_client: Redis client instance (redis.Redis)
            default_ttl: TTL used when set() gets none
            prefix: Namespace for all keys of this service
        """
        super().__init__(default_ttl)
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(self._key(key))
            return value.decode('utf-8') if value else None
        except Exception as e:
            logger.warning("Redis get error: {}", e)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            return bool(self.redis.setex(self._key(key), ttl or self.default_ttl, value))
        except Exception as e:
            logger.warning("Redis set error: {}", e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(self._key(key)))
        except Exception as e:
            logger.warning("Redis delete error: {}", e)
            return False

    async def clear(self) -> bool:
        """Delete this service's keys only"""
        try:
            keys = list(self.redis.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.redis.delete(*keys)
            return True
        except Exception as e:
            logger.warning("Redis clear error: {}", e)
            return False


class InMemoryCache(CacheStrategy):
    """
    In-memory cache with TTL enforcement.

    Pros:
    - Very fast (no network overhead)
    - No external dependencies

    Cons:
    - Not shared between worker processes
    - Lost on restart

    Expired entries are dropped lazily on read and swept on write.
    """

    def __init__(self, default_ttl: int = 300, clock=time.monotonic):
        super().__init__(default_ttl)
        self._cache: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        now = self._clock()
        self._purge_expired(now)
        self._cache[key] = (value, now + (ttl or self.default_ttl))
        return True

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def clear(self) -> bool:
        self._cache.clear()
        return True

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]

    def __len__(self) -> int:
        return len(self._cache)


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.

    Used for tests and for disabling caching entirely.
    """

    async def get(self, key: str) -> Optional[str]:
        """Always returns None (cache miss)"""
        return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return True

    async def clear(self) -> bool:
        return True
