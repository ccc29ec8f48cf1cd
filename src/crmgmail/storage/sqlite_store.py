"""Summary: SQLite key-value storage standing in for the host settings store.

Importance: Provides options and expiring transients behind one injected object.
Alternatives: Use Redis for transients and a relational table for options.
"""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator


class SqliteStore:
    """Summary: SQLite-backed options and transient storage.

    Importance: Enables local persistence of accounts, settings, and cached lookups.
    Alternatives: Persist settings in a JSON file and cache in memory.
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: The clock is injectable so TTL behavior is testable.
        Alternatives: Hardcode time.time() in every query.
        """

        self._db_path = Path(db_path)
        self._clock = clock

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before services touch it.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS options (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS transients (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            connection.commit()

    def get_option(self, name: str, default: Any = None) -> Any:
        """Summary: Read a JSON option value.

        Importance: Corrupt values fall back to the default instead of raising.
        Alternatives: Raise on decode errors and force manual repair.
        """

        with self._connection() as connection:
            row = connection.execute(
                "SELECT value FROM options WHERE name = ?", (name,)
            ).fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            return default

    def set_option(self, name: str, value: Any) -> None:
        with self._connection() as connection:
            connection.execute(
                "INSERT OR REPLACE INTO options (name, value) VALUES (?, ?)",
                (name, json.dumps(value)),
            )
            connection.commit()

    def delete_option(self, name: str) -> None:
        with self._connection() as connection:
            connection.execute("DELETE FROM options WHERE name = ?", (name,))
            connection.commit()

    def get_transient(self, name: str) -> Any:
        """Summary: Read a transient that has not expired yet.

        Importance: Expired entries behave exactly like missing ones.
        Alternatives: Purge expired rows on a schedule and trust the table.
        """

        with self._connection() as connection:
            row = connection.execute(
                "SELECT value, expires_at FROM transients WHERE name = ?", (name,)
            ).fetchone()
        if not row or row[1] <= self._clock():
            return None
        try:
            return json.loads(row[0])
        except ValueError:
            return None

    def set_transient(self, name: str, value: Any, ttl_seconds: int) -> None:
        with self._connection() as connection:
            connection.execute(
                "INSERT OR REPLACE INTO transients (name, value, expires_at) VALUES (?, ?, ?)",
                (name, json.dumps(value), self._clock() + ttl_seconds),
            )
            connection.commit()

    def delete_transient(self, name: str) -> None:
        with self._connection() as connection:
            connection.execute("DELETE FROM transients WHERE name = ?", (name,))
            connection.commit()

    def delete_transients_by_prefix(self, prefix: str) -> int:
        """Summary: Delete every transient whose name starts with a prefix.

        Importance: Backs coarse cache invalidation and uninstall cleanup.
        Alternatives: Track cache keys in a separate index option.
        """

        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM transients WHERE name LIKE ? ESCAPE '\\'", (escaped + "%",)
            )
            connection.commit()
            return cursor.rowcount

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: One connection per operation keeps the store safe across worker threads.
        Alternatives: Keep a single long-lived connection with a lock.
        """

        connection = sqlite3.connect(self._db_path, timeout=30)
        try:
            yield connection
        finally:
            connection.close()
