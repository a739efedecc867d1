"""Cache layer public interface"""
from .redis_cache import (
    LockNotAcquiredError,
    RedisCache,
    init_redis_cache,
    shutdown_redis_cache,
)

__all__ = [
    "LockNotAcquiredError",
    "RedisCache",
    "init_redis_cache",
    "shutdown_redis_cache",
]
