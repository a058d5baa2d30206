"""Client for the Company Finder HTTP API.

Wraps the retrying ``AsyncHTTPClient`` with the three read endpoints.  The
``all`` sentinel is dropped before parameters leave the process, pages are
1-based and translated to ``limit``/``offset``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote, urlencode

from company_finder.core.cancellation import CancelToken
from company_finder.core.csv_export import EXPORT_FILENAME
from company_finder.core.data_models import PAGE_SIZE, Company, SearchFilters, SearchResponse
from company_finder.core.errors import TransientError
from company_finder.core.http_client import AsyncHTTPClient

COMPANIES_PATH = "/api/companies"
EXPORT_PATH = "/api/export"

logger = logging.getLogger(__name__)


def build_export_url(base_url: str, filters: SearchFilters) -> str:
    """URL that downloads the CSV for ``filters``."""
    params = filters.to_params()
    url = f"{base_url.rstrip('/')}{EXPORT_PATH}"
    return f"{url}?{urlencode(params)}" if params else url


class CompanyFinderClient:
    """Typed access to the list, detail and export endpoints."""

    def __init__(self, http: AsyncHTTPClient, base_url: str = "") -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def list_companies(
        self,
        filters: SearchFilters,
        page: int = 1,
        limit: int = PAGE_SIZE,
        cancel_token: Optional[CancelToken] = None,
    ) -> SearchResponse:
        if page < 1:
            raise ValueError("page must be 1 or greater")
        params = dict(filters.to_params())
        params["limit"] = str(limit)
        params["offset"] = str((page - 1) * limit)

        data = await self.http.fetch_json(
            self._url(COMPANIES_PATH), params=params, cancel_token=cancel_token
        )
        if not isinstance(data, dict):
            raise TransientError("Malformed search response: expected an object")
        return SearchResponse.from_dict(data)

    async def get_company(
        self, company_id: str, cancel_token: Optional[CancelToken] = None
    ) -> Company:
        """Fetch one company.

        Raises
        ------
        ValueError
            If ``company_id`` is blank.
        ClientRequestError
            With ``is_not_found`` set when the registry has no such company.
        """
        if not company_id or not company_id.strip():
            raise ValueError("Company ID is required")
        data = await self.http.fetch_json(
            self._url(f"{COMPANIES_PATH}/{quote(company_id.strip(), safe='')}"),
            cancel_token=cancel_token,
        )
        if not isinstance(data, dict):
            raise TransientError("Malformed company response: expected an object")
        try:
            return Company.from_dict(data)
        except ValueError as exc:
            raise TransientError(f"Malformed company response: {exc}") from exc

    def export_url(self, filters: SearchFilters) -> str:
        return build_export_url(self.base_url, filters)

    async def download_csv(
        self, filters: SearchFilters, destination: Union[str, Path] = "."
    ) -> Path:
        """Fetch the CSV export and save it.

        Goes straight to the network: exports never use the search cache or
        request deduplication.  When ``destination`` is a directory the file
        is saved there as ``companies.csv``.

        Returns:
            Path of the written file
        """
        destination = Path(destination)
        if destination.is_dir():
            destination = destination / EXPORT_FILENAME
        destination.parent.mkdir(parents=True, exist_ok=True)

        body = await self.http.fetch_bytes(self._url(EXPORT_PATH), params=filters.to_params())
        destination.write_bytes(body)
        logger.info("Saved export (%d bytes) to %s", len(body), destination)
        return destination
