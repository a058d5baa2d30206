"""Query cache for the list and detail views.

``QueryClient`` holds one entry per query key (``("companies", params)``,
``("company-detail", id)``).  An entry is fresh for ``stale_time`` seconds,
during which ``fetch_query`` answers without touching the network.  Entries
are retained for ``gc_time`` seconds and then dropped by
``collect_garbage``.  Failed fetches are retried unless the failure is a
client error, and concurrent fetches of one key share a single call.

``QueryCachePersister`` writes the successful entries to durable storage
under a versioned key so a restart starts warm, coalescing writes that land
within the throttle window.

``QueryObserver`` follows one query slot across parameter changes and keeps
the previous page's data visible while the next page loads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from company_finder.core.errors import RequestCancelled, is_client_error
from company_finder.storage.database import LocalStore

logger = logging.getLogger(__name__)

QueryKey = Tuple[Hashable, ...]
QueryFn = Callable[[], Awaitable[Any]]
Encoder = Callable[[Any], Any]
Decoder = Callable[[Any], Any]

DEFAULT_STALE_TIME = 300  # 5 minutes
DEFAULT_GC_TIME = 600  # 10 minutes
DEFAULT_RETRY = 3
MAX_RETRY_DELAY = 30.0

PERSIST_KEY = "COMPANY_FINDER_QUERY_CACHE"
PERSIST_BUSTER = "v1"
PERSIST_MAX_AGE = 86400  # 24 hours
PERSIST_THROTTLE = 1.0


@dataclass
class QueryState:
    data: Any = None
    error: Optional[BaseException] = None
    updated_at: float = 0.0
    failure_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.data is not None


class QueryClient:
    """Keyed query cache with staleness, retry and optional persistence."""

    def __init__(
        self,
        stale_time: float = DEFAULT_STALE_TIME,
        gc_time: float = DEFAULT_GC_TIME,
        retry: int = DEFAULT_RETRY,
        persister: Optional["QueryCachePersister"] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.retry = retry
        self.persister = persister
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self._queries: Dict[QueryKey, QueryState] = {}
        self._inflight: Dict[QueryKey, "asyncio.Future[Any]"] = {}
        self._codecs: Dict[Hashable, Tuple[Encoder, Decoder]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    # -- codecs -----------------------------------------------------------

    def register_codec(self, namespace: Hashable, encode: Encoder, decode: Decoder) -> None:
        """Teach the client how to persist data stored under ``namespace``.

        Entries whose namespace has no codec stay in memory only.
        """
        self._codecs[namespace] = (encode, decode)

    # -- reading and writing ----------------------------------------------

    def get_state(self, key: QueryKey) -> Optional[QueryState]:
        return self._queries.get(key)

    def get_query_data(self, key: QueryKey) -> Any:
        state = self._queries.get(key)
        return state.data if state else None

    def is_fresh(self, key: QueryKey) -> bool:
        state = self._queries.get(key)
        if state is None or not state.has_data:
            return False
        return self._clock() - state.updated_at < self.stale_time

    def set_query_data(self, key: QueryKey, data: Any, updated_at: Optional[float] = None) -> None:
        self._queries[key] = QueryState(
            data=data, updated_at=self._clock() if updated_at is None else updated_at
        )
        if self.persister is not None:
            self.persister.persist(self)

    def invalidate(self, namespace: Optional[Hashable] = None) -> int:
        """Mark entries stale so the next fetch goes to the network."""
        count = 0
        for key, state in self._queries.items():
            if namespace is None or key[0] == namespace:
                state.updated_at = 0.0
                count += 1
        return count

    def clear(self) -> None:
        self._queries.clear()
        if self.persister is not None:
            self.persister.remove()

    def __len__(self) -> int:
        return len(self._queries)

    # -- fetching -----------------------------------------------------------

    def should_retry(self, failure_count: int, error: BaseException) -> bool:
        """``failure_count`` counts failures so far, including this one."""
        if isinstance(error, RequestCancelled) or is_client_error(error):
            return False
        return failure_count < self.retry

    @staticmethod
    def retry_delay(failure_count: int) -> float:
        return min(2.0 ** (failure_count - 1), MAX_RETRY_DELAY)

    async def fetch_query(self, key: QueryKey, fn: QueryFn) -> Any:
        """Return fresh cached data or run ``fn`` (single-flight per key)."""
        if self.is_fresh(key):
            self.logger.debug("Fresh cache for %s", key)
            return self._queries[key].data

        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(self._run(key, fn))
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    def _release(self, key: QueryKey, task: "asyncio.Future[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark retrieved; waiters receive the exception through the shield
            task.exception()

    async def _run(self, key: QueryKey, fn: QueryFn) -> Any:
        failure_count = 0
        while True:
            try:
                data = await fn()
            except RequestCancelled:
                raise
            except Exception as exc:
                failure_count += 1
                if not self.should_retry(failure_count, exc):
                    state = self._queries.setdefault(key, QueryState())
                    state.error = exc
                    state.failure_count = failure_count
                    self.logger.warning("Query %s failed after %d attempt(s): %s", key, failure_count, exc)
                    raise
                delay = self.retry_delay(failure_count)
                self.logger.debug("Retrying query %s in %.1fs", key, delay)
                await self._sleep(delay)
                continue

            self.set_query_data(key, data)
            return data

    # -- retention ------------------------------------------------------------

    def collect_garbage(self) -> int:
        """Drop entries whose data is older than ``gc_time``."""
        now = self._clock()
        expired = [
            key
            for key, state in self._queries.items()
            if key not in self._inflight and now - state.updated_at >= self.gc_time
        ]
        for key in expired:
            del self._queries[key]
        if expired:
            self.logger.debug("Garbage collected %d queries", len(expired))
        return len(expired)

    # -- persistence ------------------------------------------------------------

    def dehydrate(self) -> List[Dict[str, Any]]:
        """Serialisable snapshot of successful, data-bearing entries."""
        snapshot = []
        for key, state in self._queries.items():
            codec = self._codecs.get(key[0])
            if codec is None or not state.has_data or state.error is not None:
                continue
            snapshot.append(
                {"key": list(key), "data": codec[0](state.data), "updated_at": state.updated_at}
            )
        return snapshot

    def hydrate(self, entries: List[Dict[str, Any]], max_age: Optional[float] = None) -> int:
        """Load entries produced by ``dehydrate``; returns how many were kept."""
        now = self._clock()
        restored = 0
        for entry in entries:
            try:
                key = tuple(entry["key"])
                updated_at = float(entry["updated_at"])
                codec = self._codecs.get(key[0])
                if codec is None:
                    continue
                if max_age is not None and now - updated_at >= max_age:
                    continue
                self._queries[key] = QueryState(data=codec[1](entry["data"]), updated_at=updated_at)
                restored += 1
            except (KeyError, IndexError, TypeError, ValueError) as e:
                self.logger.warning("Skipping unreadable persisted query: %s", e)
        return restored

    def restore(self) -> int:
        """Rehydrate from the persister, if one is configured."""
        if self.persister is None:
            return 0
        entries = self.persister.restore()
        if not entries:
            return 0
        restored = self.hydrate(entries, max_age=self.persister.max_age)
        self.logger.debug("Restored %d persisted queries", restored)
        return restored

    def close(self) -> None:
        if self.persister is not None:
            self.persister.flush()


class QueryCachePersister:
    """Writes ``QueryClient`` snapshots to a ``LocalStore`` blob."""

    def __init__(
        self,
        store: LocalStore,
        key: str = PERSIST_KEY,
        buster: str = PERSIST_BUSTER,
        max_age: float = PERSIST_MAX_AGE,
        throttle: float = PERSIST_THROTTLE,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.key = key
        self.buster = buster
        self.max_age = max_age
        self.throttle = throttle
        self._clock = clock or time.time
        self._pending: Optional[List[Dict[str, Any]]] = None
        self._last_write: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self.write_count = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    def persist(self, client: QueryClient) -> None:
        """Queue a snapshot; writes at most once per throttle window."""
        self._pending = client.dehydrate()
        now = self._clock()
        if self._last_write is None or now - self._last_write >= self.throttle:
            self.flush()
            return
        self._schedule(self.throttle - (now - self._last_write))

    def _schedule(self, delay: float) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to wake us; the pending snapshot is written by flush()
            return
        self._timer = loop.call_later(max(delay, 0.0), self.flush)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def flush(self) -> bool:
        """Write the pending snapshot now.  Returns True if something was written."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is None:
            return False

        blob = {
            "buster": self.buster,
            "timestamp": self._clock(),
            "clientState": {"queries": self._pending},
        }
        self.store.set_item(self.key, blob)
        self._last_write = self._clock()
        self._pending = None
        self.write_count += 1
        self.logger.debug("Persisted %d queries", len(blob["clientState"]["queries"]))
        return True

    def restore(self) -> Optional[List[Dict[str, Any]]]:
        """Return persisted entries, or None when absent, outdated or expired."""
        blob = self.store.get_item(self.key)
        if not isinstance(blob, dict):
            return None
        if blob.get("buster") != self.buster:
            self.logger.info("Discarding persisted cache with buster %r", blob.get("buster"))
            self.remove()
            return None
        timestamp = blob.get("timestamp")
        if not isinstance(timestamp, (int, float)) or self._clock() - timestamp >= self.max_age:
            self.logger.info("Discarding expired persisted cache")
            self.remove()
            return None
        queries = (blob.get("clientState") or {}).get("queries")
        return queries if isinstance(queries, list) else None

    def remove(self) -> None:
        self._pending = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.store.remove_item(self.key)


@dataclass
class QueryResult:
    """What a view renders for one query slot."""

    status: str = "idle"  # idle | loading | success | error
    data: Any = None
    error: Optional[BaseException] = None
    is_placeholder: bool = False
    is_fetching: bool = False

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"


class QueryObserver:
    """Tracks the current key of one view and its displayed result."""

    def __init__(self, client: QueryClient, keep_previous: bool = True) -> None:
        self.client = client
        self.keep_previous = keep_previous
        self.key: Optional[QueryKey] = None
        self.result = QueryResult()

    async def observe(self, key: QueryKey, fn: QueryFn) -> QueryResult:
        """Switch to ``key`` and fetch it.

        While the fetch runs ``result`` holds the previous successful data
        flagged as a placeholder.  A fetch for a key that has since been
        replaced never overwrites ``result``.
        """
        self.key = key
        if self.client.is_fresh(key):
            self.result = QueryResult(status="success", data=self.client.get_query_data(key))
            return self.result

        previous = self.result.data if self.keep_previous else None
        self.result = QueryResult(
            status="loading" if previous is None else "success",
            data=previous,
            is_placeholder=previous is not None,
            is_fetching=True,
        )

        try:
            data = await self.client.fetch_query(key, fn)
        except RequestCancelled:
            if self.key == key:
                self.result.is_fetching = False
            return self.result
        except Exception as exc:
            if self.key == key:
                self.result = QueryResult(status="error", error=exc)
            return self.result

        if self.key == key:
            self.result = QueryResult(status="success", data=data)
        return self.result
