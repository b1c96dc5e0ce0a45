"""In-memory TTL cache for OAuth access tokens used by hosted scraping APIs."""

import asyncio
import hashlib
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], Awaitable[tuple[str, float]]]


class AccessTokenCache:
    """TTL cache keyed by credential identity.

    Tokens are treated as expired ``safety_margin`` seconds before their real
    expiry so a request never starts with a token about to lapse.  Pass a
    custom ``clock`` in tests to move time forward.

    Usage::

        cache = AccessTokenCache()
        key = AccessTokenCache.make_key(client_id, client_secret)
        token = await cache.get_or_fetch(key, fetch_token)
    """

    def __init__(
        self,
        safety_margin: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, tuple[str, float]] = {}
        self._safety_margin = safety_margin
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    @staticmethod
    def make_key(*parts: str) -> str:
        """Hash credential parts so secrets never sit in cache keys."""
        raw = "\x1f".join(p or "" for p in parts)
        return hashlib.sha256(raw.encode()).hexdigest()

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        token, expires_at = entry
        if self._clock() < expires_at - self._safety_margin:
            return token
        del self._entries[key]
        return None

    def set(self, key: str, token: str, expires_in: float) -> None:
        if len(self._entries) >= self._max_size and key not in self._entries:
            oldest_key = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest_key]
        self._entries[key] = (token, self._clock() + expires_in)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def get_or_fetch(self, key: str, fetcher: TokenFetcher) -> str:
        """Return a cached token or fetch, cache and return a fresh one."""
        token = self.get(key)
        if token:
            return token
        async with self._lock:
            token = self.get(key)
            if token:
                return token
            token, expires_in = await fetcher()
            if token:
                self.set(key, token, expires_in)
                logger.debug("Access token refreshed; valid for %.0fs", expires_in)
            return token

    def __len__(self) -> int:
        return len(self._entries)
