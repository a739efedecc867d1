"""
Process-wide bearer-token cache for bKash.

Entries are keyed by a fingerprint of the literal credential values, never by
gateway type, so stores with their own merchant accounts cannot read each
other's tokens. Refreshes are single-flight per key: concurrent callers that
find an expired entry wait on one grant instead of each hitting the provider.
Readers that find a live token take no lock.
"""
from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from core.logging_config import get_logger


logger = get_logger(__name__)

# grant() returns (token, lifetime_seconds)
TokenGrant = Callable[[], Awaitable[tuple[str, float]]]


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float


def credential_key(*parts: str) -> str:
    """Stable cache key for a credential set; the raw secret never becomes a dict key."""
    joined = "\x1f".join(p or "" for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class TokenCache:
    def __init__(
        self,
        *,
        safety_margin: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._safety_margin = safety_margin
        self._clock = clock
        self._entries: dict[str, CachedToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, key: str) -> Optional[CachedToken]:
        entry = self._entries.get(key)
        if entry is not None and self._clock() < entry.expires_at - self._safety_margin:
            return entry
        return None

    def _lock_for(self, key: str) -> asyncio.Lock:
        # setdefault is atomic under the event loop; no await between check and insert
        return self._locks.setdefault(key, asyncio.Lock())

    async def get_token(self, key: str, grant: TokenGrant) -> str:
        entry = self._fresh(key)
        if entry is not None:
            return entry.token

        async with self._lock_for(key):
            # Another waiter may have refreshed while we queued
            entry = self._fresh(key)
            if entry is not None:
                return entry.token
            token, lifetime = await grant()
            issued_at = self._clock()
            self._entries[key] = CachedToken(token=token, expires_at=issued_at + float(lifetime))
            logger.info("token_cache_refreshed", cache_key=key[:12], lifetime=lifetime)
            return token

    def peek(self, key: str) -> Optional[CachedToken]:
        return self._entries.get(key)

    def invalidate(self, key: str, token: Optional[str] = None) -> None:
        """Drop an entry. With `token`, only drop it if it is still the cached one."""
        entry = self._entries.get(key)
        if entry is None:
            return
        if token is not None and entry.token != token:
            return
        del self._entries[key]
        logger.info("token_cache_invalidated", cache_key=key[:12])

    def __len__(self) -> int:
        return len(self._entries)
