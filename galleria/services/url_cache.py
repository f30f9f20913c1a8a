"""
Signed URL cache.

Every gallery read fans out into three signed URLs per photo, so URLs are
cached per storage key. A URL is requested with a one-hour validity but cached
for less, so a cached URL handed to a client always has time left to run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from .storage import StorageNotConfigured

logger = logging.getLogger(__name__)

PLACEHOLDER_URL = "https://placehold.co/800x600/1a1a1a/ffffff?text=S3+Not+Configured"


class CacheEntry(NamedTuple):
    url: str
    expires: float


class SignedUrlCache:
    def __init__(
        self,
        store,
        expires_in: int = 3600,
        cache_ttl: int = 3000,
        sweep_interval: float = 600,
        production: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cache_ttl >= expires_in:
            raise ValueError("cache_ttl must be shorter than the URL validity")
        self.store = store
        self.expires_in = expires_in
        self.cache_ttl = cache_ttl
        self.sweep_interval = sweep_interval
        self.production = production
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get_url(self, key: str) -> str:
        if not self.store.configured:
            if self.production:
                raise StorageNotConfigured("S3 is not configured. Check AWS environment variables.")
            return PLACEHOLDER_URL

        cached = self._entries.get(key)
        if cached and self._clock() < cached.expires:
            return cached.url

        url = await self.store.presign(key, self.expires_in)
        self._entries[key] = CacheEntry(url, self._clock() + self.cache_ttl)
        return url

    async def get_urls(self, keys: Iterable[str]) -> List[str]:
        """Signed URLs for many keys, fetched concurrently, in input order."""
        return list(await asyncio.gather(*(self.get_url(k) for k in keys)))

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now >= entry.expires]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # ===== lifecycle =====
    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("URL cache sweep removed %d entries", removed)

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._entries.clear()
