"""Cache package."""

from lesson_engine.db.cache import (
    CacheProvider,
    MemoryCache,
    RedisCache,
    close_redis_pool,
    get_redis,
)

__all__ = ["CacheProvider", "MemoryCache", "RedisCache", "close_redis_pool", "get_redis"]
