"""Durable client-side storage for Company Finder using SQLite.

This stands in for the browser storage the web front end relied on.  It is a
small JSON key/value table holding the last-used filters and page, the
recent-search list and the persisted query cache blob.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional


class LocalStore:
    """SQLite-backed key/value store."""

    def __init__(self, db_path: str = ".company_finder/state.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file (``:memory:`` is not supported
                because each operation opens its own connection)
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(self.__class__.__name__)
        parent = Path(self.db_path).parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            self.logger.error(f"Database error: {e}")
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """
            )
            self.logger.debug(f"Local store initialized at {self.db_path}")

    def get_item(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Args:
            key: Storage key
            default: Returned when the key is absent or unreadable

        Returns:
            Decoded JSON value or ``default``
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()

        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError as e:
            self.logger.warning(f"Discarding unreadable value for {key}: {e}")
            return default

    def set_item(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value, replacing any previous one."""
        payload = json.dumps(value)
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
            """,
                (key, payload, time.time()),
            )
        self.logger.debug(f"Stored value for key: {key}")

    def remove_item(self, key: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def keys(self, prefix: Optional[str] = None) -> List[str]:
        with self._get_connection() as conn:
            if prefix:
                rows = conn.execute(
                    "SELECT key FROM kv_store WHERE key LIKE ? ORDER BY key", (f"{prefix}%",)
                ).fetchall()
            else:
                rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def clear(self) -> int:
        """
        Remove every stored value.

        Returns:
            Number of entries deleted
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM kv_store")
            deleted = cursor.rowcount
        self.logger.info(f"Cleared {deleted} stored entries")
        return deleted

    def get_statistics(self) -> Dict[str, Any]:
        with self._get_connection() as conn:
            count = conn.execute("SELECT COUNT(*) AS count FROM kv_store").fetchone()["count"]
            size = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(value)), 0) AS total FROM kv_store"
            ).fetchone()["total"]

        return {
            "entries": count,
            "value_bytes": size,
            "database_size_bytes": Path(self.db_path).stat().st_size,
        }
