"""In-memory caching primitives for Company Finder.

``TTLCache`` keeps the last successful value per key together with the time
it was stored.  An entry is served only while ``now - timestamp < ttl``;
stale entries are skipped but left in place until ``cleanup_expired`` runs.

``KeyedDeduplicator`` layers single-flight on top: concurrent callers asking
for the same key share one in-flight call, and only successful results are
written to the cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

# Default TTL (in seconds)
SEARCH_TTL = 300  # 5 minutes

T = TypeVar("T")
Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    value: T
    timestamp: float


class TTLCache(Generic[T]):
    """Keyed cache whose entries are fresh for ``ttl`` seconds."""

    def __init__(self, ttl: float = SEARCH_TTL, clock: Optional[Clock] = None) -> None:
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._hits = 0
        self._misses = 0

    def _is_fresh(self, entry: CacheEntry[T]) -> bool:
        return self._clock() - entry.timestamp < self.ttl

    def get(self, key: Hashable) -> Optional[T]:
        """Return the fresh value for ``key`` or None."""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            self._hits += 1
            logger.debug("Cache hit for key: %s", key)
            return entry.value
        self._misses += 1
        logger.debug("Cache miss for key: %s", key)
        return None

    def set(self, key: Hashable, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def cleanup_expired(self) -> int:
        """Remove entries older than the TTL.

        Returns:
            Number of entries removed
        """
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate_percent": round(hit_rate, 2),
            "ttl": self.ttl,
        }


class KeyedDeduplicator(Generic[T]):
    """Keyed async deduplicator with a TTL cache.

    ``run(key, factory)`` returns a fresh cached value when there is one,
    joins an in-flight call for the same key when there is one, and
    otherwise invokes ``factory`` exactly once.  Failures (including
    cancellation) are propagated to every waiter and never cached.
    """

    def __init__(self, ttl: float = SEARCH_TTL, clock: Optional[Clock] = None) -> None:
        self.cache: TTLCache[T] = TTLCache(ttl=ttl, clock=clock)
        self._inflight: Dict[Hashable, "asyncio.Future[T]"] = {}

    def cached(self, key: Hashable) -> Optional[T]:
        return self.cache.get(key)

    def pending(self, key: Hashable) -> Optional["asyncio.Future[T]"]:
        return self._inflight.get(key)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def run(
        self, key: Hashable, factory: Callable[[], Awaitable[T]], replace: bool = False
    ) -> T:
        """Run or join the call for ``key``.

        With ``replace`` set, an in-flight call is not joined; the new call
        takes its place and the old one settles without touching the entry.
        """
        value = self.cache.get(key)
        if value is not None:
            return value

        existing = self._inflight.get(key)
        if existing is not None and not replace:
            logger.debug("Joining in-flight request for key: %s", key)
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._settle(key, done))
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: "asyncio.Future[T]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled() or task.exception() is not None:
            return
        self.cache.set(key, task.result())

    def cleanup_expired(self) -> int:
        return self.cache.cleanup_expired()

    def clear(self) -> None:
        self.cache.clear()
