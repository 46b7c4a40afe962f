"""Shared pytest fixtures.

Provides an in-memory remote store with upsert-by-key semantics and
failure injection, plus in-memory persistence and a fast monitor.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Generator
from typing import Any

import pytest

from pharmasync.client.api import RemoteUnavailableError
from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.state import KeyValueStore
from pharmasync.client.sync.queue import DurableQueue
from pharmasync.core.config import SyncSettings

Record = dict[str, Any]


class FakeRemoteStore:
    """In-memory RemoteStore.

    Set ``fail_with`` to make writes raise, optionally limited to
    ``fail_collections``. Set ``healthy`` to drive the health check.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[Record]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.fail_collections: set[str] = set()
        self.healthy = True
        self._lock = threading.Lock()

    def _check(self, op: str, collection: str) -> None:
        self.calls.append((op, collection))
        if self.fail_with is None:
            return
        if not self.fail_collections or collection in self.fail_collections:
            raise self.fail_with

    def go_down(self) -> None:
        """Make every call fail as unreachable."""
        self.healthy = False
        self.fail_with = RemoteUnavailableError("connection refused")

    def come_back(self) -> None:
        """Make the store reachable again."""
        self.healthy = True
        self.fail_with = None

    def upsert(self, collection: str, record: Record, conflict_key: str) -> None:
        with self._lock:
            self._check("upsert", collection)
            rows = self.tables[collection]
            for row in rows:
                if row.get(conflict_key) == record[conflict_key]:
                    row.update(record)
                    return
            rows.append(dict(record))

    def insert(self, collection: str, records: list[Record]) -> None:
        with self._lock:
            self._check("insert", collection)
            self.tables[collection].extend(dict(r) for r in records)

    def update(self, collection: str, filters: Record, patch: Record) -> None:
        with self._lock:
            self._check("update", collection)
            for row in self.tables[collection]:
                if all(row.get(k) == v for k, v in filters.items()):
                    row.update(patch)

    def select(self, collection: str, filters: Record | None = None) -> list[Record]:
        with self._lock:
            self._check("select", collection)
            return [
                dict(row) for row in self.tables[collection]
                if all(row.get(k) == v for k, v in (filters or {}).items())
            ]

    def count(self, collection: str) -> int:
        with self._lock:
            self._check("count", collection)
            return len(self.tables[collection])

    def health_check(self) -> bool:
        return self.healthy

    def rows(self, collection: str) -> list[Record]:
        """Get the stored rows of a table."""
        with self._lock:
            return [dict(row) for row in self.tables[collection]]


@pytest.fixture
def remote() -> FakeRemoteStore:
    """Create an empty in-memory remote store."""
    return FakeRemoteStore()


@pytest.fixture
def store() -> Generator[KeyValueStore, None, None]:
    """Create an in-memory key-value store."""
    s = KeyValueStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def settings() -> SyncSettings:
    """Settings without probe backoff, so every check probes."""
    return SyncSettings(probe_backoff=0.0)


@pytest.fixture
def monitor(remote: FakeRemoteStore, settings: SyncSettings) -> ConnectivityMonitor:
    """Create a monitor probing the fake remote store (starts offline)."""
    return ConnectivityMonitor(remote.health_check, settings=settings)


@pytest.fixture
def queue(
    store: KeyValueStore,
    remote: FakeRemoteStore,
    monitor: ConnectivityMonitor,
) -> Generator[DurableQueue, None, None]:
    """Create a durable queue wired to the fake remote and monitor."""
    q = DurableQueue(store, remote, monitor)
    yield q
    q.close()
