"""Company Finder - search, browse and export a company registry.

A small read-only service over a hosted ``companies`` table, plus the
client library and CLI that drive it: debounced live search, cached
queries, recent searches and CSV export.
"""

__version__ = "0.1.0"
__author__ = "Company Finder Contributors"

from company_finder.core.data_models import Company, SearchFilters, SearchResponse

__all__ = ["Company", "SearchFilters", "SearchResponse", "__version__"]
