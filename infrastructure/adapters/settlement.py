"""Adapters implementing the settlement-side ports: cart clearing and per-order locks."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.cache.redis_cache import LockNotAcquiredError, RedisCache


logger = get_logger(__name__)


def cart_key(store_id: str, order_id: str) -> str:
    return f"cart:{store_id}:{order_id}"


class RedisCartClearer:
    def __init__(self, cache: RedisCache):
        self.cache = cache

    async def clear(self, store_id: str, order_id: str) -> None:
        removed = await self.cache.delete(cart_key(store_id, order_id))
        logger.info("cart_cleared", store_id=store_id, order_id=order_id, removed=removed)


class NullCartClearer:
    """Used when no server-side cart store is configured; the storefront clears its own."""

    async def clear(self, store_id: str, order_id: str) -> None:
        logger.info("cart_clear_skipped", store_id=store_id, order_id=order_id)


class RedisSettlementLock:
    def __init__(
        self,
        cache: RedisCache,
        *,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.timeout = timeout or payment_settings.settlement.lock_timeout_seconds
        self.blocking_timeout = blocking_timeout or payment_settings.settlement.lock_blocking_timeout_seconds

    def hold(self, key: str):
        return self.cache.lock(key, timeout=self.timeout, blocking_timeout=self.blocking_timeout)


class InProcessSettlementLock:
    """Per-key asyncio locks; only serialises settlements within one worker process."""

    def __init__(self, *, blocking_timeout: Optional[float] = None):
        self.blocking_timeout = blocking_timeout or payment_settings.settlement.lock_blocking_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
            except asyncio.TimeoutError as exc:
                raise LockNotAcquiredError(key) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
