"""FastAPI application for the Company Finder registry.

Provides the read-only REST endpoints the search screen talks to:
a filtered, paginated company list, a single-company lookup and a CSV
export of every matching row.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from company_finder import __version__
from company_finder.core.config import Config, get_config
from company_finder.core.csv_export import (
    CSV_MEDIA_TYPE,
    companies_to_csv,
    content_disposition,
)
from company_finder.core.data_models import ALL, SearchFilters, SearchResponse
from company_finder.core.errors import RegistryError
from company_finder.core.logging_setup import (
    AuditLogger,
    PerformanceLogger,
    configure_comprehensive_logging,
    log_performance,
)
from company_finder.storage.registry import RegistryStore, create_registry

logger = logging.getLogger(__name__)


# Pydantic models
class CompanyModel(BaseModel):
    """One row of the ``companies`` table."""

    id: str
    name: Optional[str] = None
    register_name: Optional[str] = None
    business_name: Optional[str] = None
    abn: Optional[str] = None
    acn: Optional[str] = None
    status: Optional[str] = None
    state: Optional[str] = None
    state_number: Optional[str] = None
    registration_date: Optional[str] = None
    cancellation_date: Optional[str] = None
    industry: Optional[str] = None
    registration_number: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class CompanyListResponse(BaseModel):
    """Paginated search response."""

    companies: List[CompanyModel]
    total: int = Field(..., description="Total rows matching the filters")
    hasMore: bool = Field(..., description="True when this page was full")


def _client_id(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _filters(
    q: Optional[str],
    industry: Optional[str],
    state: Optional[str],
    status_: Optional[str],
) -> SearchFilters:
    return SearchFilters(
        query=q or "",
        industry=industry or ALL,
        state=state or ALL,
        status=status_ or ALL,
    )


def create_app(
    config: Optional[Config] = None,
    registry: Optional[RegistryStore] = None,
) -> FastAPI:
    """Build the API.

    Args:
        config: Configuration to read limits and logging from (default: global)
        registry: Store to query; built lazily from ``config`` when omitted
    """
    config = config or get_config()
    default_limit = config.get_int("api.default_limit", 20)
    max_limit = config.get_int("api.max_limit", 100)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup and shutdown events."""
        # === STARTUP ===
        log_dir = Path(config.get("logging.directory", "logs"))
        log_level_str = str(config.get("logging.level", "INFO")).upper()
        log_level = getattr(logging, log_level_str, logging.INFO)
        use_json = config.get_bool("logging.json_format", False)

        audit_logger, performance_logger = configure_comprehensive_logging(
            log_dir=log_dir,
            level=log_level,
            use_json=use_json,
            console_output=True,
        )
        app.state.audit_logger = audit_logger
        app.state.performance_logger = performance_logger

        logger.info("Company Finder API starting up...")
        logger.info(f"Registry backend: {config.get('registry.backend', 'supabase')}")
        logger.info(f"Logging directory: {log_dir}")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Company Finder API shutting down...")
        store = app.state.registry
        if store is not None:
            await store.aclose()

    app = FastAPI(
        title="Company Finder API",
        description="Search and export the company registry",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.audit_logger = None
    app.state.performance_logger = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get("api.cors_origins", ["*"]),
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    def get_registry(request: Request) -> RegistryStore:
        store = request.app.state.registry
        if store is None:
            try:
                store = create_registry(config)
            except ValueError as e:
                logger.error(f"Registry is not configured: {e}")
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Registry is not configured",
                )
            request.app.state.registry = store
        return store

    def audit(request: Request) -> Optional[AuditLogger]:
        return request.app.state.audit_logger

    def perf(request: Request) -> Optional[PerformanceLogger]:
        return request.app.state.performance_logger

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    @app.get("/api/companies", response_model=CompanyListResponse)
    async def list_companies(
        request: Request,
        q: Optional[str] = Query(None, description="Name substring"),
        industry: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        status_: Optional[str] = Query(None, alias="status"),
        limit: int = Query(default_limit, ge=1, le=max_limit),
        offset: int = Query(0, ge=0),
        store: RegistryStore = Depends(get_registry),
    ) -> Dict[str, Any]:
        """Search the registry, one page at a time."""
        filters = _filters(q, industry, state, status_)
        try:
            with log_performance(
                "registry_search", logger=logger, performance_logger=perf(request)
            ):
                companies, total = await store.search(filters, limit=limit, offset=offset)
        except RegistryError as e:
            logger.error(f"Search failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch companies")
        except Exception as e:
            logger.error(f"Search error: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to fetch companies")

        audit_logger = audit(request)
        if audit_logger:
            audit_logger.log_search(
                client=_client_id(request),
                filters=filters.constraints(),
                results_count=len(companies),
                total=total,
            )
        return SearchResponse.for_page(companies, total, limit).to_dict()

    @app.get("/api/companies/{company_id}", response_model=CompanyModel)
    async def get_company(
        company_id: str,
        request: Request,
        store: RegistryStore = Depends(get_registry),
    ) -> Dict[str, Any]:
        """Get one company by ID."""
        company_id = company_id.strip()
        if not company_id:
            raise HTTPException(status_code=400, detail="Company ID is required")

        try:
            with log_performance(
                "registry_lookup", logger=logger, performance_logger=perf(request)
            ):
                company = await store.get_company(company_id)
        except RegistryError as e:
            logger.error(f"Lookup failed for {company_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch company details")
        except Exception as e:
            logger.error(f"Lookup error: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to fetch company details")

        audit_logger = audit(request)
        if audit_logger:
            audit_logger.log_lookup(_client_id(request), company_id, found=company is not None)
        if company is None:
            raise HTTPException(status_code=404, detail="Company not found")
        return company.to_dict()

    @app.get("/api/export")
    async def export_companies(
        request: Request,
        q: Optional[str] = Query(None),
        query: Optional[str] = Query(None, description="Alias of q"),
        industry: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        status_: Optional[str] = Query(None, alias="status"),
        store: RegistryStore = Depends(get_registry),
    ) -> Response:
        """Export every matching company as CSV."""
        filters = _filters(q if q is not None else query, industry, state, status_)
        try:
            with log_performance(
                "registry_export", logger=logger, performance_logger=perf(request)
            ):
                companies = await store.export(filters)
        except RegistryError as e:
            logger.error(f"Export failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to export data")
        except Exception as e:
            logger.error(f"Export error: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to export data")

        audit_logger = audit(request)
        if audit_logger:
            audit_logger.log_export(
                client=_client_id(request),
                export_format="csv",
                filters=filters.constraints(),
                record_count=len(companies),
            )
        return Response(
            content=companies_to_csv(companies),
            media_type=CSV_MEDIA_TYPE,
            headers={"Content-Disposition": content_disposition()},
        )

    return app


app = create_app()
