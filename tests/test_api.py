"""Tests for the Company Finder Web API.

Runs the FastAPI app against a SQLite registry seeded with known rows.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from company_finder.api.main import create_app
from company_finder.core.config import Config
from company_finder.core.data_models import SearchFilters
from company_finder.core.errors import RegistryError
from company_finder.storage.registry import SQLiteRegistry


def acme_rows():
    rows = [
        {
            "id": f"acme-{i:02d}",
            "register_name": f"Acme Holdings {i:02d}",
            "business_name": "Acme",
            "industry": "Retail",
            "state": "NSW",
            "status": "Registered",
            "registration_date": "2020-01-01",
            "abn": f"1000000000{i:02d}",
        }
        for i in range(15)
    ]
    rows.append(
        {
            "id": "other-1",
            "register_name": 'Zed, "The" Company',
            "business_name": "Zed",
            "industry": "Technology",
            "state": "VIC",
            "status": "Deregistered",
        }
    )
    return rows


@pytest.fixture
def config(tmp_path):
    """Config isolated from the working directory."""
    cfg = Config(str(tmp_path / "missing.yaml"))
    cfg.set("logging.directory", str(tmp_path / "logs"))
    return cfg


@pytest.fixture
def registry(tmp_path):
    store = SQLiteRegistry(tmp_path / "companies.db")
    store.insert_companies(acme_rows())
    return store


@pytest.fixture
def client(config, registry):
    """Test client fixture."""
    return TestClient(create_app(config=config, registry=registry))


class TestHealthCheck:
    """Test health check endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["version"] == "0.1.0"


class TestListCompanies:
    """Tests for GET /api/companies."""

    def test_first_page_full(self, client):
        response = client.get(
            "/api/companies", params={"q": "acme", "state": "NSW", "limit": 12, "offset": 0}
        )
        assert response.status_code == 200
        data = response.json()
        assert len(data["companies"]) == 12
        assert data["total"] == 15
        assert data["hasMore"] is True

    def test_second_page_short(self, client):
        response = client.get(
            "/api/companies", params={"q": "acme", "state": "NSW", "limit": 12, "offset": 12}
        )
        data = response.json()
        assert len(data["companies"]) == 3
        assert data["total"] == 15
        assert data["hasMore"] is False

    def test_default_limit_is_twenty(self, client):
        data = client.get("/api/companies").json()
        assert data["total"] == 16
        assert len(data["companies"]) == 16
        assert data["hasMore"] is False

    def test_all_sentinel_is_unconstrained(self, client):
        data = client.get(
            "/api/companies", params={"industry": "all", "state": "all", "status": "all"}
        ).json()
        assert data["total"] == 16

    def test_ordered_by_register_name(self, client):
        data = client.get("/api/companies", params={"limit": 3}).json()
        names = [c["register_name"] for c in data["companies"]]
        assert names == sorted(names)

    def test_filters_combine(self, client):
        data = client.get(
            "/api/companies", params={"status": "deregistered", "industry": "tech"}
        ).json()
        assert [c["id"] for c in data["companies"]] == ["other-1"]

    def test_no_matches(self, client):
        data = client.get("/api/companies", params={"q": "nothing-like-this"}).json()
        assert data == {"companies": [], "total": 0, "hasMore": False}

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
    def test_invalid_pagination(self, client, params):
        assert client.get("/api/companies", params=params).status_code == 422

    def test_registry_failure_is_500(self, config):
        registry = MagicMock()
        registry.search = AsyncMock(side_effect=RegistryError("connection refused"))
        client = TestClient(create_app(config=config, registry=registry))

        response = client.get("/api/companies")
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to fetch companies"

    def test_filters_reach_registry(self, config):
        registry = MagicMock()
        registry.search = AsyncMock(return_value=([], 0))
        client = TestClient(create_app(config=config, registry=registry))

        client.get("/api/companies", params={"q": " acme ", "state": "NSW", "offset": 24})
        registry.search.assert_awaited_once_with(
            SearchFilters(query="acme", state="NSW"), limit=20, offset=24
        )


class TestGetCompany:
    """Tests for GET /api/companies/{id}."""

    def test_found(self, client):
        response = client.get("/api/companies/acme-03")
        assert response.status_code == 200
        assert response.json()["register_name"] == "Acme Holdings 03"

    def test_not_found(self, client):
        response = client.get("/api/companies/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Company not found"

    def test_blank_id(self, client):
        response = client.get("/api/companies/%20")
        assert response.status_code == 400
        assert response.json()["detail"] == "Company ID is required"

    def test_registry_failure_is_500(self, config):
        registry = MagicMock()
        registry.get_company = AsyncMock(side_effect=RegistryError("down"))
        client = TestClient(create_app(config=config, registry=registry))
        assert client.get("/api/companies/1").status_code == 500


class TestExport:
    """Tests for GET /api/export."""

    def test_csv_response(self, client):
        response = client.get("/api/export", params={"q": "acme", "state": "NSW"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert (
            response.headers["content-disposition"] == 'attachment; filename="companies.csv"'
        )
        lines = response.text.split("\n")
        assert lines[0] == "Register Name,Business Name,Status,Registration Date,State,ABN"
        # Header, 15 rows and the trailing newline
        assert len(lines) == 17
        assert lines[1] == "Acme Holdings 00,Acme,Registered,2020-01-01,NSW,100000000000"
        assert lines[-1] == ""

    def test_export_is_not_paginated(self, client):
        response = client.get("/api/export")
        assert len(response.text.splitlines()) == 17

    def test_escaping(self, client):
        response = client.get("/api/export", params={"state": "VIC"})
        assert response.text.splitlines()[1] == '"Zed, ""The"" Company",Zed,Deregistered,,VIC,'

    def test_query_alias(self, client):
        response = client.get("/api/export", params={"query": "zed"})
        assert len(response.text.splitlines()) == 2

    def test_no_matches_is_header_only(self, client):
        response = client.get("/api/export", params={"q": "nothing-like-this"})
        assert response.text == "Register Name,Business Name,Status,Registration Date,State,ABN\n"

    def test_registry_failure_is_500(self, config):
        registry = MagicMock()
        registry.export = AsyncMock(side_effect=RegistryError("down"))
        client = TestClient(create_app(config=config, registry=registry))
        response = client.get("/api/export")
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to export data"


class TestLifespan:
    """Tests for startup and shutdown."""

    def test_lifespan_configures_audit_logging_and_closes_registry(self, config):
        registry = MagicMock()
        registry.search = AsyncMock(return_value=([], 0))
        registry.aclose = AsyncMock()
        app = create_app(config=config, registry=registry)

        with TestClient(app) as client:
            assert app.state.audit_logger is not None
            assert client.get("/api/companies").status_code == 200

        registry.aclose.assert_awaited_once()

    def test_unconfigured_registry_is_500(self, config, monkeypatch):
        for name in ("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", "REGISTRY_URL", "REGISTRY_BACKEND"):
            monkeypatch.delenv(name, raising=False)
        config.set("registry.url", "")
        client = TestClient(create_app(config=config))
        response = client.get("/api/companies")
        assert response.status_code == 500
        assert response.json()["detail"] == "Registry is not configured"
