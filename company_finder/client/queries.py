"""Cached queries backing the list and detail views."""

from __future__ import annotations

from typing import Any, Dict

from company_finder.client.api_client import CompanyFinderClient
from company_finder.core.data_models import PAGE_SIZE, Company, SearchFilters, SearchResponse
from company_finder.core.query_cache import QueryClient, QueryKey, QueryObserver, QueryResult

COMPANIES_QUERY_KEY = "companies"
COMPANY_DETAIL_QUERY_KEY = "company-detail"


def companies_key(filters: SearchFilters, page: int, limit: int) -> QueryKey:
    return (COMPANIES_QUERY_KEY, filters.cache_key(page=page, limit=limit))


def company_detail_key(company_id: str) -> QueryKey:
    return (COMPANY_DETAIL_QUERY_KEY, company_id.strip())


def _encode_response(response: SearchResponse) -> Dict[str, Any]:
    return response.to_dict()


def _encode_company(company: Company) -> Dict[str, Any]:
    return company.to_dict()


def register_codecs(query_client: QueryClient) -> None:
    """Let ``query_client`` persist and restore company lists and details."""
    query_client.register_codec(COMPANIES_QUERY_KEY, _encode_response, SearchResponse.from_dict)
    query_client.register_codec(COMPANY_DETAIL_QUERY_KEY, _encode_company, Company.from_dict)


class CompanyQueries:
    """List and detail lookups through a shared ``QueryClient``."""

    def __init__(self, api: CompanyFinderClient, query_client: QueryClient) -> None:
        self.api = api
        self.query_client = query_client
        register_codecs(query_client)

    async def companies(
        self, filters: SearchFilters, page: int = 1, limit: int = PAGE_SIZE
    ) -> SearchResponse:
        return await self.query_client.fetch_query(
            companies_key(filters, page, limit),
            lambda: self.api.list_companies(filters, page=page, limit=limit),
        )

    async def company_details(self, company_id: str) -> Company:
        if not company_id or not company_id.strip():
            raise ValueError("Company ID is required")
        return await self.query_client.fetch_query(
            company_detail_key(company_id),
            lambda: self.api.get_company(company_id),
        )

    def companies_observer(self) -> "CompaniesView":
        return CompaniesView(self)


class CompaniesView:
    """Results list that keeps the last page on screen while the next loads."""

    def __init__(self, queries: CompanyQueries) -> None:
        self.queries = queries
        self.observer = QueryObserver(queries.query_client, keep_previous=True)

    @property
    def result(self) -> QueryResult:
        return self.observer.result

    async def show(
        self, filters: SearchFilters, page: int = 1, limit: int = PAGE_SIZE
    ) -> QueryResult:
        return await self.observer.observe(
            companies_key(filters, page, limit),
            lambda: self.queries.api.list_companies(filters, page=page, limit=limit),
        )
