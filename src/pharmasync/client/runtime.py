"""Process-wide wiring of the sync components.

This module provides:
- SyncRuntime: Builds one of each component and manages their lifecycle

Components are constructed once per process and passed to each other
explicitly; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pharmasync.client.api import RemoteStoreClient
from pharmasync.client.backend import LocalBackendClient
from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.scheduler import AutoBackupScheduler
from pharmasync.client.state import KeyValueStore
from pharmasync.client.sync import (
    ChangePoller,
    DurableQueue,
    LocalSeeder,
    RemoteSnapshotSource,
    WriteRouter,
)
from pharmasync.core.config import BackendConfig, RemoteConfig, SyncSettings
from pharmasync.core.types import SyncState

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    """All sync components of one process."""

    store: KeyValueStore
    remote: RemoteStoreClient
    monitor: ConnectivityMonitor
    queue: DurableQueue
    router: WriteRouter
    poller: ChangePoller
    backend: LocalBackendClient | None = None
    scheduler: AutoBackupScheduler | None = None
    seeder: LocalSeeder | None = None

    @classmethod
    def build(
        cls,
        state_path: Path | str,
        remote_config: RemoteConfig,
        backend_config: BackendConfig | None = None,
        settings: SyncSettings | None = None,
    ) -> SyncRuntime:
        """Construct and connect every component.

        Args:
            state_path: SQLite file holding the queue and markers.
            remote_config: Remote store connection settings.
            backend_config: Local backend settings (enables local fallback,
                notification generation, automatic backups and seeding).
            settings: Timing and threshold settings.
        """
        settings = settings or SyncSettings()
        store = KeyValueStore(state_path)
        remote = RemoteStoreClient(remote_config)
        monitor = ConnectivityMonitor(
            probe=remote.health_check if remote_config.is_configured else None,
            settings=settings,
        )
        queue = DurableQueue(
            store,
            remote,
            monitor,
            default_max_retries=settings.max_retries,
        )
        backend = LocalBackendClient(backend_config) if backend_config else None
        router = WriteRouter(remote, queue, monitor, local_store=backend)
        source = RemoteSnapshotSource(
            remote,
            before_fetch=backend.generate_notifications if backend is not None else None,
        )
        poller = ChangePoller(source, settings=settings)
        scheduler: AutoBackupScheduler | None = None
        seeder: LocalSeeder | None = None
        if backend is not None:
            seeder = LocalSeeder(backend, remote, monitor)
            scheduler = AutoBackupScheduler(
                backend,
                router,
                store,
                hour=settings.backup_hour,
                minute=settings.backup_minute,
            )
        return cls(
            store=store,
            remote=remote,
            monitor=monitor,
            queue=queue,
            router=router,
            poller=poller,
            backend=backend,
            scheduler=scheduler,
            seeder=seeder,
        )

    def sync_state(self) -> SyncState:
        """Summarize connectivity and backlog into one state."""
        if not self.monitor.should_use_remote():
            return SyncState.OFFLINE
        if self.queue.is_draining:
            return SyncState.SYNCING
        if self.queue.get_queue_size() > 0:
            return SyncState.PENDING
        return SyncState.IDLE

    def start(self, poll: bool = True) -> None:
        """Start background probing, polling and scheduling."""
        self.monitor.start()
        if poll:
            self.poller.start()
        if self.scheduler is not None:
            self.scheduler.start()

    def close(self) -> None:
        """Stop every component and release resources."""
        if self.scheduler is not None:
            self.scheduler.stop()
        self.poller.stop()
        self.monitor.stop()
        self.queue.close()
        self.remote.close()
        if self.backend is not None:
            self.backend.close()
        self.store.close()
        logger.debug("Sync runtime closed")
