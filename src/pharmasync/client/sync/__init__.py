"""Offline-first sync: durable queue, write routing and change polling.

Architecture:
    mutation ──► WriteRouter ──► RemoteStore
                     │ (offline / remote error)
                     ▼
                DurableQueue ──(reconnect)──► RemoteStore

    ChangePoller ──► RemoteStore (read only) ──► ChangeListener events

    LocalSeeder: local backend ──(upsert by key)──► RemoteStore

Components:
- **DurableQueue**: Persisted FIFO backlog of writes, replayed by drain()
- **WriteRouter**: Decides per write between the remote store and the queue
- **ChangePoller**: Diffs remote snapshots into added/removed/refreshed events
- **LocalSeeder**: Bulk-copies local tables to the remote store and compares counts

All public symbols are re-exported here.
"""

from pharmasync.client.sync.poller import (
    ChangeListener,
    ChangePoller,
    RemoteSnapshotSource,
    SnapshotSource,
    diff_snapshots,
)
from pharmasync.client.sync.queue import DurableQueue
from pharmasync.client.sync.router import WriteRouter
from pharmasync.client.sync.seed import (
    SEED_TABLE_NAMES,
    SEED_TABLES,
    ConsistencyReport,
    LocalSeeder,
    SeedResult,
    SeedTable,
)
from pharmasync.client.sync.types import (
    CONFLICT_KEYS,
    InvalidCollectionError,
    SyncError,
    SyncItem,
    WriteResult,
    validate_collection,
)

__all__ = [
    # Poller
    "ChangeListener",
    "ChangePoller",
    "RemoteSnapshotSource",
    "SnapshotSource",
    "diff_snapshots",
    # Queue
    "DurableQueue",
    # Router
    "WriteRouter",
    # Seeding
    "SEED_TABLE_NAMES",
    "SEED_TABLES",
    "ConsistencyReport",
    "LocalSeeder",
    "SeedResult",
    "SeedTable",
    # Types
    "CONFLICT_KEYS",
    "InvalidCollectionError",
    "SyncError",
    "SyncItem",
    "WriteResult",
    "validate_collection",
]
