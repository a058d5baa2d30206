"""Search controller for the live search box.

Every keystroke and filter change calls ``submit``; only the last call in a
quiet period (1 second by default) actually fires.  A fire then:

1. builds the canonical key for (query, industry, state, status, page);
2. does nothing if that key equals the last dispatched key;
3. serves a fresh cached result (5 minute TTL) without a network call;
4. joins an in-flight request for the same key unless it was superseded;
5. otherwise cancels the previous live request and dispatches a new one;
6. caches and applies a successful result and records the query in the
   recent-search history;
7. drops cancelled requests silently;
8. records other failures as the error state without caching them.

At most one live request exists at a time, and a superseded request never
writes to the state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

from company_finder.client.api_client import CompanyFinderClient
from company_finder.core.cache import SEARCH_TTL, KeyedDeduplicator
from company_finder.core.cancellation import CancelToken
from company_finder.core.data_models import SearchFilters, SearchResponse
from company_finder.core.errors import RequestCancelled
from company_finder.core.state import ClientState

DEFAULT_DEBOUNCE = 1.0  # seconds

ResultsCallback = Callable[[SearchResponse, SearchFilters], None]
ErrorCallback = Callable[[BaseException], None]
LoadingCallback = Callable[[bool], None]


class SearchController:
    """Debounced, deduplicated, cached search over the list endpoint."""

    def __init__(
        self,
        client: CompanyFinderClient,
        state: ClientState,
        debounce: float = DEFAULT_DEBOUNCE,
        ttl: float = SEARCH_TTL,
        on_results: Optional[ResultsCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_loading: Optional[LoadingCallback] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.client = client
        self.state = state
        self.debounce = debounce
        self.ttl = ttl
        self.on_results = on_results
        self.on_error = on_error
        self.on_loading = on_loading
        self.requests: KeyedDeduplicator[SearchResponse] = KeyedDeduplicator(ttl=ttl, clock=clock)
        self._last_dispatched_key: Optional[str] = None
        self._live_token: Optional[CancelToken] = None
        self._live_key: Optional[str] = None
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None
        self._fires: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    # -- debounce -----------------------------------------------------------

    def submit(self, query: str, filters: Optional[SearchFilters] = None) -> asyncio.Task:
        """Schedule a search; a later call within the quiet period replaces it.

        Must be called from inside a running event loop.
        """
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        filters = filters or self.state.filters
        self._pending = asyncio.ensure_future(self._debounced(query, filters))
        return self._pending

    async def _debounced(self, query: str, filters: SearchFilters) -> Optional[SearchResponse]:
        await asyncio.sleep(self.debounce)
        # From here on the call has fired and is no longer debounced away
        self._pending = None
        fire = asyncio.ensure_future(self.search_now(query, filters))
        self._fires.add(fire)
        fire.add_done_callback(self._fires.discard)
        return await asyncio.shield(fire)

    async def flush(self) -> None:
        """Wait for the pending debounce timer and every fired search."""
        if self._pending is not None:
            try:
                await self._pending
            except asyncio.CancelledError:
                pass
        if self._fires:
            await asyncio.gather(*list(self._fires), return_exceptions=True)

    # -- fire ---------------------------------------------------------------

    async def search_now(
        self, query: str, filters: Optional[SearchFilters] = None, page: Optional[int] = None
    ) -> Optional[SearchResponse]:
        """Run one search immediately.

        Returns:
            The applied response, or None when the call was suppressed,
            superseded, cancelled or failed
        """
        filters = (filters or self.state.filters).with_changes(query=query or "")
        self.state.set_filters(filters)
        if page is not None:
            self.state.set_page(page)
        page = self.state.page
        limit = self.state.page_size
        key = filters.cache_key(page=page, limit=limit)

        if key == self._last_dispatched_key:
            self.logger.debug("Suppressing duplicate search: %s", key)
            return None
        self._last_dispatched_key = key
        self._generation += 1
        generation = self._generation

        cached = self.requests.cached(key)
        if cached is not None:
            self.logger.debug("Serving search from cache: %s", key)
            self._apply(cached, filters)
            return cached

        self._set_loading(True)
        inflight = self.requests.pending(key)
        if inflight is not None and (key != self._live_key or self._live_token.cancelled):
            # Its token is already cancelled; joining would only see the cancellation
            inflight = None
        if inflight is None:
            if self._live_token is not None:
                self._live_token.cancel("superseded")
            token = CancelToken()
            self._live_token = token
            self._live_key = key
            factory = lambda: self.client.list_companies(  # noqa: E731
                filters, page=page, limit=limit, cancel_token=token
            )
        else:
            factory = None

        try:
            if factory is None:
                response = await asyncio.shield(inflight)
            else:
                response = await self.requests.run(key, factory, replace=True)
        except RequestCancelled:
            self.logger.debug("Search superseded: %s", key)
            if generation == self._generation:
                self._last_dispatched_key = None
                self._set_loading(False)
            return None
        except Exception as exc:
            if generation != self._generation:
                return None
            self.logger.warning("Search failed for %s: %s", key, exc)
            self._last_dispatched_key = None
            self.state.apply_error(exc)
            self._set_loading(False)
            if self.on_error is not None:
                self.on_error(exc)
            return None

        if generation != self._generation:
            self.logger.debug("Discarding result of superseded search: %s", key)
            return None
        self._apply(response, filters)
        return response

    def _apply(self, response: SearchResponse, filters: SearchFilters) -> None:
        self.state.apply_results(response)
        if filters.query:
            self.state.recent.add(filters.query)
        self._set_loading(False)
        if self.on_results is not None:
            self.on_results(response, filters)

    def _set_loading(self, loading: bool) -> None:
        if loading:
            self.state.begin_loading()
        else:
            self.state.finish_loading()
        if self.on_loading is not None:
            self.on_loading(loading)

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep of expired cache entries."""
        if self._sweeper is None:
            self._sweeper = asyncio.ensure_future(self._sweep())

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.ttl)
            removed = self.requests.cleanup_expired()
            if removed:
                self.logger.debug("Swept %d expired search results", removed)

    async def close(self) -> None:
        """Stop the sweep, drop pending timers and cancel the live request."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._live_token is not None:
            self._live_token.cancel("closed")
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        if self._fires:
            await asyncio.gather(*list(self._fires), return_exceptions=True)
