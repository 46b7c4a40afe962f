"""Durable key-value state for the sync client.

This module provides:
- KeyValueStore: SQLite-backed ``load``/``save`` persistence
- PersistenceError: Raised when the state database cannot be used

The store holds the pending write queue and "last successful run"
markers (such as the date of the last automatic backup). Each ``save``
commits a single statement, so a reader never observes a partial value.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class PersistenceError(Exception):
    """The durable state could not be read or written."""


class KeyValueStore:
    """SQLite-based key-value store.

    Values are opaque bytes. Thread-safe.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (or create) the state database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".

        Raises:
            PersistenceError: If the database cannot be opened.
        """
        self._lock = threading.RLock()
        target = str(db_path)

        try:
            if target != MEMORY:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                target,
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            if target != MEMORY:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_state (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open state database {target}: {e}") from e

        self._path = target
        logger.debug("Opened state database at %s", target)

    @property
    def path(self) -> str:
        """Get the database location."""
        return self._path

    def load(self, key: str) -> bytes | None:
        """Read a value.

        Args:
            key: Key to read.

        Returns:
            Stored bytes, or None if the key is absent.
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM kv_state WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot read {key!r}: {e}") from e
        if row is None:
            return None
        return bytes(row[0])

    def save(self, key: str, value: bytes) -> None:
        """Write a value, replacing any previous one.

        Args:
            key: Key to write.
            value: Bytes to store.
        """
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv_state (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, sqlite3.Binary(value), time.time()),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot write {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        """Remove a key if present."""
        try:
            with self._lock:
                self._conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot delete {key!r}: {e}") from e

    def keys(self) -> list[str]:
        """List stored keys."""
        try:
            with self._lock:
                rows = self._conn.execute("SELECT key FROM kv_state ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot list keys: {e}") from e
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
