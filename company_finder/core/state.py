"""Client-side state for Company Finder.

``ClientState`` is an explicit container for everything the search screen
remembers: current filters, page, last results, last error and the recent
search list.  It is created by whoever drives the UI (the CLI, a test) and
passed to the components that need it; nothing here is a module global.

When given a ``LocalStore`` the filters, page and recent searches survive
restarts under the same keys the web front end used.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from company_finder.core.data_models import PAGE_SIZE, SearchFilters, SearchResponse
from company_finder.storage.database import LocalStore

FILTERS_KEY = "companyFinderFilters"
PAGE_KEY = "companyFinderPage"
RECENT_SEARCHES_KEY = "recentSearches"
DEFAULT_RECENT_LIMIT = 5

logger = logging.getLogger(__name__)


class RecentSearches:
    """Most-recent-first list of previously submitted queries."""

    def __init__(self, store: Optional[LocalStore] = None, max_items: int = DEFAULT_RECENT_LIMIT):
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.max_items = max_items
        self._store = store
        self._items: List[str] = []
        if store is not None:
            self._load()

    def _load(self) -> None:
        assert self._store is not None
        stored = self._store.get_item(RECENT_SEARCHES_KEY, [])
        if not isinstance(stored, list):
            logger.warning("Ignoring malformed recent searches in storage")
            stored = []
        self._items = [str(item) for item in stored if str(item).strip()][: self.max_items]

    def _save(self) -> None:
        if self._store is not None:
            self._store.set_item(RECENT_SEARCHES_KEY, self._items)

    @property
    def items(self) -> List[str]:
        return list(self._items)

    def add(self, search: str) -> bool:
        """Move ``search`` to the front; blank input is ignored."""
        search = (search or "").strip()
        if not search:
            return False
        self._items = [search] + [item for item in self._items if item != search]
        self._items = self._items[: self.max_items]
        self._save()
        return True

    def remove(self, search: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item != search]
        if len(self._items) == before:
            return False
        self._save()
        return True

    def clear(self) -> None:
        self._items = []
        self._save()

    def __iter__(self):
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, search: object) -> bool:
        return search in self._items


class ClientState:
    """Injectable container for search screen state."""

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        page_size: int = PAGE_SIZE,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self.store = store
        self.page_size = page_size
        self.filters = SearchFilters()
        self.page = 1
        self.results: Optional[SearchResponse] = None
        self.error: Optional[BaseException] = None
        self.loading = False
        self.recent = RecentSearches(store, max_items=recent_limit)

    def restore(self) -> None:
        """Reload filters and page from durable storage."""
        if self.store is None:
            return
        stored_filters = self.store.get_item(FILTERS_KEY)
        if isinstance(stored_filters, dict):
            self.filters = SearchFilters.from_dict(stored_filters)
        stored_page = self.store.get_item(PAGE_KEY)
        if isinstance(stored_page, int) and stored_page >= 1:
            self.page = stored_page
        logger.debug("Restored filters=%s page=%d", self.filters, self.page)

    def set_filters(self, filters: SearchFilters) -> bool:
        """Replace the filters; any change resets the page to 1.

        Returns:
            True if the filters changed
        """
        if filters == self.filters:
            return False
        self.filters = filters
        self.page = 1
        self._persist()
        return True

    def set_page(self, page: int) -> None:
        if page < 1:
            raise ValueError("page must be 1 or greater")
        self.page = page
        self._persist()

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def total_pages(self) -> int:
        if self.results is None or self.results.total <= 0:
            return 0
        return -(-self.results.total // self.page_size)

    def begin_loading(self) -> None:
        """Mark a fetch as started; previous results stay visible."""
        self.loading = True

    def apply_results(self, response: SearchResponse) -> None:
        self.results = response
        self.error = None
        self.loading = False

    def apply_error(self, error: BaseException) -> None:
        self.results = None
        self.error = error
        self.loading = False

    def finish_loading(self) -> None:
        self.loading = False

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.set_item(FILTERS_KEY, self.filters.to_dict())
        self.store.set_item(PAGE_KEY, self.page)
