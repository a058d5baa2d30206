"""Client side of Company Finder.

This package contains:
- The typed HTTP API client and CSV download
- Query hooks for the list and detail views
- The debounced live search controller
"""

from company_finder.client.api_client import CompanyFinderClient, build_export_url
from company_finder.client.queries import CompanyQueries
from company_finder.client.search_controller import SearchController

__all__ = ["CompanyFinderClient", "CompanyQueries", "SearchController", "build_export_url"]
