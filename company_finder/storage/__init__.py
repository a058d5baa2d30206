"""Storage layer for Company Finder.

This package contains:
- Registry stores for the remote ``companies`` table (hosted and SQLite)
- The local key-value store backing client state
"""

from company_finder.storage.database import LocalStore
from company_finder.storage.registry import (
    RegistryStore,
    SQLiteRegistry,
    SupabaseRegistry,
    create_registry,
)

__all__ = ["LocalStore", "RegistryStore", "SQLiteRegistry", "SupabaseRegistry", "create_registry"]
