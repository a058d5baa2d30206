"""HTTP API for Company Finder."""

from company_finder.api.main import create_app

__all__ = ["create_app"]
