"""Registry store adapters.

The company registry lives in an external relational table named
``companies``.  Every operation here is a single filtered SELECT:

- ``query`` matches ``register_name`` or ``business_name`` (case-insensitive
  substring)
- ``industry`` is a case-insensitive substring match
- ``state`` is an exact match
- ``status`` is a case-insensitive equality
- rows are ordered by ``register_name`` ascending

``SupabaseRegistry`` talks to the hosted PostgREST endpoint; ``SQLiteRegistry``
keeps an identical table locally for development and tests.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple, Union

import httpx

from company_finder.core.data_models import Company, SearchFilters
from company_finder.core.errors import RegistryError

logger = logging.getLogger(__name__)

COLUMNS: Tuple[str, ...] = tuple(Company.field_names())


class RegistryStore(ABC):
    """Port for the remote company table."""

    @abstractmethod
    async def search(
        self, filters: SearchFilters, limit: int, offset: int = 0
    ) -> Tuple[List[Company], int]:
        """Return one page of matching companies and the total match count."""

    @abstractmethod
    async def get_company(self, company_id: str) -> Optional[Company]:
        """Return the company with ``company_id`` or None."""

    @abstractmethod
    async def export(self, filters: SearchFilters) -> List[Company]:
        """Return every matching company, without pagination."""

    async def aclose(self) -> None:
        """Release connections held by the store."""


def _quote_postgrest(value: str) -> str:
    """Double-quote a value so commas and parentheses survive ``or=(...)``."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_postgrest_params(filters: SearchFilters) -> List[Tuple[str, str]]:
    """Translate filters into PostgREST query parameters.

    Unconstrained fields are omitted entirely, so the ``all`` sentinel is
    never sent to the store.
    """
    params: List[Tuple[str, str]] = [("select", "*")]
    constraints = filters.constraints()

    if "query" in constraints:
        pattern = _quote_postgrest(f"*{constraints['query']}*")
        params.append(
            ("or", f"(register_name.ilike.{pattern},business_name.ilike.{pattern})")
        )
    if "industry" in constraints:
        params.append(("industry", f"ilike.*{constraints['industry']}*"))
    if "state" in constraints:
        params.append(("state", f"eq.{constraints['state']}"))
    if "status" in constraints:
        params.append(("status", f"ilike.{constraints['status']}"))

    params.append(("order", "register_name.asc"))
    return params


def parse_content_range(header: Optional[str], default: int = 0) -> int:
    """Extract the total from a ``Content-Range: 0-11/15`` header."""
    if not header or "/" not in header:
        return default
    total = header.rsplit("/", 1)[1].strip()
    if total == "*":
        return default
    try:
        return int(total)
    except ValueError:
        logger.warning("Unparseable Content-Range header: %s", header)
        return default


class SupabaseRegistry(RegistryStore):
    """Registry backed by a hosted Supabase (PostgREST) table."""

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "companies",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise ValueError("Supabase URL is required")
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily create the pooled HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._api_key}",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _select(
        self, params: List[Tuple[str, str]], headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        try:
            response = await self.client.get(self.endpoint, params=params, headers=headers)
        except httpx.HTTPError as e:
            self.logger.error("Registry request failed: %s", e)
            raise RegistryError(f"Registry request failed: {e}") from e

        # PostgREST answers 416 when the offset is past the last row
        if response.status_code >= 400 and response.status_code != 416:
            self.logger.error(
                "Registry returned %d: %s", response.status_code, response.text[:200]
            )
            raise RegistryError(f"Registry returned {response.status_code}")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if response.status_code == 416:
            return []
        try:
            rows = response.json()
        except ValueError as e:
            raise RegistryError(f"Malformed registry response: {e}") from e
        if not isinstance(rows, list):
            raise RegistryError("Malformed registry response: expected a list of rows")
        return rows

    async def search(
        self, filters: SearchFilters, limit: int, offset: int = 0
    ) -> Tuple[List[Company], int]:
        params = build_postgrest_params(filters)
        params.extend([("limit", str(limit)), ("offset", str(offset))])
        response = await self._select(params, headers={"Prefer": "count=exact"})
        rows = self._rows(response)
        total = parse_content_range(response.headers.get("content-range"), default=len(rows))
        return [Company.from_dict(row) for row in rows], total

    async def get_company(self, company_id: str) -> Optional[Company]:
        params = [("select", "*"), ("id", f"eq.{company_id}"), ("limit", "1")]
        rows = self._rows(await self._select(params))
        if not rows:
            return None
        return Company.from_dict(rows[0])

    async def export(self, filters: SearchFilters) -> List[Company]:
        rows = self._rows(await self._select(build_postgrest_params(filters)))
        return [Company.from_dict(row) for row in rows]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteRegistry(RegistryStore):
    """Local ``companies`` table with the same filter semantics."""

    def __init__(self, db_path: Union[str, Path] = "companies.db") -> None:
        self.db_path = str(db_path)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._initialize_schema()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            self.logger.error(f"Database error: {e}")
            raise RegistryError(f"Registry query failed: {e}") from e
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        columns = ",\n".join(
            "id TEXT PRIMARY KEY" if name == "id" else f"{name} TEXT" for name in COLUMNS
        )
        with self._get_connection() as conn:
            conn.execute(f"CREATE TABLE IF NOT EXISTS companies (\n{columns}\n)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_companies_register_name "
                "ON companies(register_name)"
            )

    def insert_companies(self, companies: Iterable[Union[Company, Dict[str, Any]]]) -> int:
        """Insert or replace rows; returns the number written."""
        placeholders = ", ".join("?" for _ in COLUMNS)
        sql = f"INSERT OR REPLACE INTO companies ({', '.join(COLUMNS)}) VALUES ({placeholders})"
        rows = []
        for company in companies:
            if not isinstance(company, Company):
                company = Company.from_dict(company)
            record = company.to_dict()
            rows.append(tuple(record[name] for name in COLUMNS))

        with self._get_connection() as conn:
            conn.executemany(sql, rows)
        self.logger.info(f"Inserted {len(rows)} companies into {self.db_path}")
        return len(rows)

    @staticmethod
    def _where(filters: SearchFilters) -> Tuple[str, List[str]]:
        clauses: List[str] = []
        args: List[str] = []
        constraints = filters.constraints()

        if "query" in constraints:
            pattern = f"%{_escape_like(constraints['query'].lower())}%"
            clauses.append(
                "(LOWER(register_name) LIKE ? ESCAPE '\\' "
                "OR LOWER(business_name) LIKE ? ESCAPE '\\')"
            )
            args.extend([pattern, pattern])
        if "industry" in constraints:
            clauses.append("LOWER(industry) LIKE ? ESCAPE '\\'")
            args.append(f"%{_escape_like(constraints['industry'].lower())}%")
        if "state" in constraints:
            clauses.append("state = ?")
            args.append(constraints["state"])
        if "status" in constraints:
            clauses.append("LOWER(status) = ?")
            args.append(constraints["status"].lower())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, args

    _ORDER = "ORDER BY register_name IS NULL, register_name ASC, id ASC"

    async def search(
        self, filters: SearchFilters, limit: int, offset: int = 0
    ) -> Tuple[List[Company], int]:
        where, args = self._where(filters)
        with self._get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) AS count FROM companies {where}", args).fetchone()[
                "count"
            ]
            rows = conn.execute(
                f"SELECT * FROM companies {where} {self._ORDER} LIMIT ? OFFSET ?",
                [*args, limit, offset],
            ).fetchall()
        return [Company.from_dict(dict(row)) for row in rows], total

    async def get_company(self, company_id: str) -> Optional[Company]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()
        return Company.from_dict(dict(row)) if row else None

    async def export(self, filters: SearchFilters) -> List[Company]:
        where, args = self._where(filters)
        with self._get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM companies {where} {self._ORDER}", args).fetchall()
        return [Company.from_dict(dict(row)) for row in rows]


def create_registry(config: Any) -> RegistryStore:
    """Build the registry selected by ``registry.backend`` in ``config``."""
    backend = str(config.get("registry.backend", "supabase")).lower()
    if backend == "sqlite":
        return SQLiteRegistry(config.get("registry.sqlite_path", "companies.db"))
    if backend == "supabase":
        url, api_key = config.get_registry_credentials()
        return SupabaseRegistry(
            url=url,
            api_key=api_key,
            table=config.get("registry.table", "companies"),
            timeout=config.get_float("registry.timeout_seconds", 10.0),
        )
    raise ValueError(f"Unknown registry backend: {backend}")
