"""Redis cache and distributed lock"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis import asyncio as aioredis
from redis.exceptions import LockError

from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


logger = get_logger(__name__)


class LockNotAcquiredError(BusinessException):
    retryable = True

    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Another settlement for this order is in progress",
            error_type="LockNotAcquired",
            details={"lock": key},
        )


class RedisCache:
    """Namespaced key operations and locks over redis.asyncio"""

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    @property
    def client(self) -> aioredis.Redis:
        return self._client

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*(self._format_key(k) for k in keys)))

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        timeout: float = 30,
        blocking_timeout: float = 10,
    ) -> AsyncIterator[None]:
        """
        Distributed lock context manager

        Args:
            key: lock name
            timeout: lock TTL in seconds
            blocking_timeout: how long to wait for the lock
        """
        lock_key = f"lock:{self._format_key(key)}"
        lock = self._client.lock(lock_key, timeout=timeout, blocking_timeout=blocking_timeout)
        if not await lock.acquire():
            logger.warning("redis_lock_timeout", lock=lock_key)
            raise LockNotAcquiredError(lock_key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # TTL expired while held; another holder may already own the key
                logger.error("redis_lock_release_failed", lock=lock_key, error=str(e))


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """Create the process-wide cache; requires redis.url"""
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("redis.url is not configured")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )

        _redis_client = client
        _cache_instance = RedisCache(
            client=client,
            namespace=namespace or settings.redis.namespace,
        )
        return _cache_instance


async def shutdown_redis_cache() -> None:
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
