"""Core functionality for Company Finder.

This package contains essential components: data models, the retrying HTTP
client, caching, configuration, logging and CSV rendering used by both the
API service and the client library.

Modules:
- cache: TTL cache and keyed request deduplication
- cancellation: Cooperative cancellation tokens
- config: Configuration management with validation
- csv_export: CSV rendering for exports
- data_models: Company records, search filters and result pages
- errors: Error taxonomy
- http_client: Retrying async HTTP client
- logging_setup: Root, audit and performance logging
- query_cache: Query cache with persistence for the list and detail views
- state: Injectable client state and recent searches
"""

from .data_models import Company, SearchFilters, SearchResponse  # noqa: F401
from .errors import (  # noqa: F401
    ApiError,
    ClientRequestError,
    CompanyFinderError,
    RegistryError,
    RequestCancelled,
    TransientError,
)
from .cancellation import CancelToken  # noqa: F401
from .cache import KeyedDeduplicator, TTLCache  # noqa: F401
from .http_client import AsyncHTTPClient  # noqa: F401
from .logging_setup import configure_logging  # noqa: F401
from .config import Config, get_config, ValidationResult  # noqa: F401
from .csv_export import companies_to_csv  # noqa: F401

__all__ = [
    # Core
    "Company",
    "SearchFilters",
    "SearchResponse",
    "AsyncHTTPClient",
    "configure_logging",
    "CancelToken",
    # Errors
    "CompanyFinderError",
    "ApiError",
    "ClientRequestError",
    "TransientError",
    "RequestCancelled",
    "RegistryError",
    # Config
    "Config",
    "get_config",
    "ValidationResult",
    # Caching
    "TTLCache",
    "KeyedDeduplicator",
    # Export
    "companies_to_csv",
]
