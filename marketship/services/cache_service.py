"""
Cache Service for carrier authentication tokens.

Carrier APIs hand out bearer tokens that stay valid for hours; logging in on
every request is slow and some carriers rate-limit their login endpoints.
Tokens are cached here, keyed per carrier.

Supports:
1. Redis (preferred for production, shared across workers)
2. In-memory fallback (for development/testing)

Usage:
    cache = get_cache()

    await cache.set_carrier_token("shiprocket", token)
    token = await cache.get_carrier_token("shiprocket")
"""
import json
from typing import Any, Optional, Dict
from datetime import datetime, timedelta, timezone
from abc import ABC, abstractmethod
import asyncio
import logging

import redis.asyncio as redis

from marketship.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        pass


class InMemoryCache(CacheBackend):
    """
    In-memory cache for development/fallback.

    Not shared between processes: each worker logs in to the carriers once.
    """

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            self._cache[key] = (value, datetime.now(timezone.utc) + timedelta(seconds=ttl))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching pattern (simple prefix match)."""
        async with self._lock:
            prefix = pattern.rstrip('*')
            keys_to_delete = [k for k in self._cache if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)


class RedisCache(CacheBackend):
    """Redis cache backend for production."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    # A cache outage must not take carrier calls down with it: failures are
    # logged and reported as a miss, the caller then logs in again.

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._get_client().get(key)
            return json.loads(value) if value else None
        except redis.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            await self._get_client().set(key, json.dumps(value), ex=ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._get_client().delete(key)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        try:
            client = self._get_client()
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await client.scan(cursor, match=pattern, count=100)
                if keys:
                    await client.delete(*keys)
                    deleted += len(keys)
                if cursor == 0:
                    break
            return deleted
        except redis.RedisError as e:
            logger.warning(f"Redis clear failed for {pattern}: {e}")
            return 0


class CacheService:
    """
    Namespaced cache facade.

    Keys follow the format ``{namespace}:{resource_type}:{identifier}``, e.g.
    ``marketship:carrier_token:shiprocket``.
    """

    def __init__(self, backend: CacheBackend, namespace: str = "marketship"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self._backend.get(self._make_key(key))

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        return await self._backend.set(self._make_key(key), value, ttl)

    async def delete(self, key: str) -> bool:
        return await self._backend.delete(self._make_key(key))

    async def clear_pattern(self, pattern: str) -> int:
        return await self._backend.clear_pattern(self._make_key(pattern))

    # ==================== Carrier Tokens ====================

    async def get_carrier_token(self, carrier: str) -> Optional[str]:
        """Get a cached auth token for a carrier."""
        return await self.get(f"carrier_token:{carrier}")

    async def set_carrier_token(self, carrier: str, token: str, ttl: Optional[int] = None) -> bool:
        """Cache a carrier auth token."""
        ttl = ttl or settings.CARRIER_TOKEN_CACHE_TTL
        return await self.set(f"carrier_token:{carrier}", token, ttl)

    async def invalidate_carrier_token(self, carrier: Optional[str] = None) -> int:
        """Drop one carrier's token, or all of them."""
        if carrier:
            await self.delete(f"carrier_token:{carrier}")
            return 1
        return await self.clear_pattern("carrier_token:*")


# Singleton cache instance
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance
