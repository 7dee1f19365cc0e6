"""
Cache Providers

Small time-boxed key/value caches that shield LessonService from repeated
repository reads. The cache is a pure side channel: a miss, an expired
entry or an eviction only costs latency, never correctness.

Providers:
- MemoryCache: in-process TTL map with bounded size (default)
- RedisCache: Redis-backed, JSON-serialized, namespaced by prefix

Values must be JSON-compatible so both providers behave the same.

Usage:
    from lesson_engine.db.cache import MemoryCache

    cache = MemoryCache(default_ttl=300)
    await cache.set("lesson:l1", lesson.model_dump(mode="json"))
    data = await cache.get("lesson:l1")
    await cache.invalidate_prefix("lessons:user-1:")
"""

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional, Protocol

import redis.asyncio as redis

from lesson_engine.config import settings, yaml_config
from lesson_engine.models.learning import CacheMetrics

logger = logging.getLogger(__name__)


# Cache configuration from yaml config, falling back to settings
cache_config: dict[str, Any] = yaml_config.get("cache", {})
DEFAULT_CACHE_TTL: int = cache_config.get("lesson_ttl", settings.CACHE_LESSON_TTL_SECONDS)
DEFAULT_LIST_TTL: int = cache_config.get(
    "lesson_list_ttl", settings.CACHE_LESSON_LIST_TTL_SECONDS
)
DEFAULT_MAX_SIZE: int = cache_config.get("max_size", settings.CACHE_MAX_SIZE)
DEFAULT_REDIS_PREFIX: str = yaml_config.get("redis", {}).get("prefix", "lesson_engine")


class CacheProvider(Protocol):
    """Protocol for cache backends used by LessonService."""

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expiry."""
        ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a value for `ttl` seconds (provider default when None)."""
        ...

    async def delete(self, key: str) -> None:
        ...

    async def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with `prefix`; returns the count removed."""
        ...

    async def clear(self) -> None:
        ...

    async def get_metrics(self) -> CacheMetrics:
        ...


class MemoryCache:
    """
    In-process TTL cache.

    Entries are kept in insertion order; when the cache is full the oldest
    entry is evicted. Expired entries are dropped lazily on read, or
    eagerly via clean_expired().
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_CACHE_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is not None:
            value, expires_at = entry
            if expires_at > self._clock():
                self.hits += 1
                return value
            del self._store[key]
        self.misses += 1
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if key in self._store:
            del self._store[key]
        elif len(self._store) >= self.max_size:
            evicted, _ = self._store.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}")

        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        self._store[key] = (value, expires_at)

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached value or await `fetcher` and cache its result."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._store if key.startswith(prefix)]
        for key in keys:
            del self._store[key]
        return len(keys)

    def clean_expired(self) -> int:
        """Drop every expired entry; returns the count removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._store.items() if expires_at <= now]
        for key in expired:
            del self._store[key]
        return len(expired)

    async def clear(self) -> None:
        self._store.clear()
        self.hits = 0
        self.misses = 0

    async def get_metrics(self) -> CacheMetrics:
        return CacheMetrics(hits=self.hits, misses=self.misses, size=len(self._store))


# Connection pool (lazily initialized)
_redis_pool: Optional[redis.ConnectionPool] = None


async def get_redis_pool() -> redis.ConnectionPool:
    """Get or create the Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=10,
        )
    return _redis_pool


async def get_redis() -> redis.Redis:
    """Get a Redis connection from the pool."""
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis_pool() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


class RedisCache:
    """
    Redis-backed cache provider.

    Keys are namespaced as "{prefix}:{key}" and values stored as JSON with
    a TTL, so expiry is handled by Redis itself.
    """

    def __init__(
        self,
        prefix: str = DEFAULT_REDIS_PREFIX,
        default_ttl: int = DEFAULT_CACHE_TTL,
    ) -> None:
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.hits = 0
        self.misses = 0

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        r = await get_redis()
        value = await r.get(self._full_key(key))
        if value is None:
            self.misses += 1
            return None
        self.hits += 1
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        r = await get_redis()
        await r.setex(
            self._full_key(key),
            self.default_ttl if ttl is None else ttl,
            json.dumps(value),
        )

    async def delete(self, key: str) -> None:
        r = await get_redis()
        await r.delete(self._full_key(key))

    async def invalidate_prefix(self, prefix: str) -> int:
        r = await get_redis()
        keys = await r.keys(f"{self._full_key(prefix)}*")
        if keys:
            await r.delete(*keys)
        return len(keys)

    async def clear(self) -> None:
        await self.invalidate_prefix("")
        self.hits = 0
        self.misses = 0

    async def get_metrics(self) -> CacheMetrics:
        r = await get_redis()
        keys = await r.keys(f"{self.prefix}:*")
        return CacheMetrics(hits=self.hits, misses=self.misses, size=len(keys))
