"""Durable write queue for offline-first sync.

This module provides:
- DurableQueue: Ordered, persisted backlog of writes waiting for the
  remote store

Writes that could not be confirmed against the remote store are appended
here and replayed by ``drain()`` once the store is reachable again.

Ordering:
    Items are replayed oldest first. When an item fails, later items of
    the same collection are held back until the next drain, so two
    offline adjustments to the same table always land in the order they
    were made. Collections are independent of each other.

Retries:
    A failed replay increments ``retry_count``. Items that reach
    ``max_retries`` are never dropped: they stay queued, are logged as
    exhausted and are skipped by regular drains. ``retry_all()`` resets
    the counters and tries them again.

Persistence:
    The whole queue is serialized to JSON and written through the
    KeyValueStore on every mutation. A write that cannot be persisted
    raises PersistenceError and leaves the in-memory queue unchanged.

Concurrency:
    An RLock guards the item list. A separate non-blocking lock makes
    drains single-flight: a drain requested while another runs is a no-op.
    Items enqueued while a drain is running are picked up by that drain.
    The background drain thread instead waits for a running drain to end
    and then makes its own pass, so nothing enqueued at the tail of a
    foreground drain is left behind.

Updates:
    Items created with ``filters`` carry a patch and are replayed through
    ``RemoteStore.update``, so a queued update never becomes a new row.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from pharmasync.client.api import RemoteUnavailableError
from pharmasync.client.state import PersistenceError
from pharmasync.client.sync.types import SyncItem, validate_collection

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore
    from pharmasync.client.connectivity import ConnectivityMonitor
    from pharmasync.client.state import KeyValueStore
    from pharmasync.core.types import ConnectivityStatus

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "pharmacy_sync_queue"


class DurableQueue:
    """Persisted FIFO queue of pending remote writes.

    Usage:
        queue = DurableQueue(store, remote, monitor)
        queue.enqueue("products", {"product_id": 42, "name": "Paracetamol"})
        # Drained automatically when the monitor reports the store usable
        queue.close()
    """

    def __init__(
        self,
        store: KeyValueStore,
        remote: RemoteStore,
        monitor: ConnectivityMonitor | None = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        default_max_retries: int = 3,
    ) -> None:
        """Initialize the queue and load persisted items.

        Args:
            store: Durable key-value persistence.
            remote: Remote store to replay items against.
            monitor: Connectivity monitor. Without one, drains only happen
                when ``drain()`` is called explicitly.
            storage_key: Key under which the queue is persisted.
            default_max_retries: Retry budget for items enqueued without one.

        Raises:
            PersistenceError: If the persisted queue cannot be read.
        """
        self._store = store
        self._remote = remote
        self._monitor = monitor
        self._storage_key = storage_key
        self._default_max_retries = default_max_retries

        self._lock = threading.RLock()
        self._drain_lock = threading.Lock()
        self._items: list[SyncItem] = []
        self._drain_thread: threading.Thread | None = None
        self._drain_requested = False

        self._load()

        self._unsubscribe: Callable[[], None] | None = None
        if monitor is not None:
            self._unsubscribe = monitor.subscribe(self._on_connectivity_change)

    # === Persistence ===

    def _load(self) -> None:
        """Load items persisted by a previous run."""
        raw = self._store.load(self._storage_key)
        if raw is None:
            return
        try:
            self._items = [SyncItem.from_dict(d) for d in json.loads(raw.decode("utf-8"))]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt sync queue under {self._storage_key!r}: {e}") from e
        if self._items:
            logger.info("Loaded %d pending sync item(s) from persistence", len(self._items))

    def _persist(self, items: list[SyncItem]) -> None:
        """Write the full queue. Must be called with the lock held."""
        data = json.dumps([item.to_dict() for item in items]).encode("utf-8")
        self._store.save(self._storage_key, data)

    def _commit(self, items: list[SyncItem]) -> None:
        """Persist a new item list, then make it current."""
        with self._lock:
            self._persist(items)
            self._items = items

    # === Public API ===

    def enqueue(
        self,
        collection: str,
        payload: dict[str, Any],
        max_retries: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> SyncItem:
        """Append a write to the queue.

        The queue is persisted before this returns. If the remote store is
        currently usable, a background drain is started.

        Args:
            collection: Target table.
            payload: Record to write.
            max_retries: Retry budget (default: the queue's default).
            filters: Equality filters when the payload is a patch of
                existing rows rather than a record to write.

        Returns:
            The queued item.

        Raises:
            InvalidCollectionError: If the collection name is malformed.
            ValueError: If ``filters`` is given but empty.
            PersistenceError: If the queue cannot be persisted.
        """
        validate_collection(collection)
        if filters is not None and not filters:
            raise ValueError("A queued update needs at least one filter")
        # Normalize to what will be persisted (datetimes, decimals -> str)
        record = json.loads(json.dumps(payload, default=str))
        item = SyncItem(
            collection=collection,
            payload=record,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            filters=json.loads(json.dumps(filters, default=str)) if filters is not None else None,
        )

        with self._lock:
            self._commit([*self._items, item])
            size = len(self._items)

        logger.info("Queued for remote sync: %s %s (queue size: %d)", collection, item.id, size)

        if self._monitor is not None and self._monitor.should_use_remote():
            self._schedule_drain()
        return item

    def drain(self) -> None:
        """Replay every pending item against the remote store.

        A no-op if another drain is already running.

        Raises:
            PersistenceError: If the queue cannot be persisted after a replay.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress, skipping")
            return
        try:
            self._drain()
        finally:
            self._drain_lock.release()

    def _next_pending(self, attempted: set[str], blocked: set[str]) -> SyncItem | None:
        with self._lock:
            for item in self._items:
                if item.id in attempted or item.exhausted:
                    continue
                if item.collection in blocked:
                    continue
                return item
        return None

    def _drain(self) -> None:
        with self._lock:
            pending = sum(1 for item in self._items if not item.exhausted)
        if pending == 0:
            return

        logger.info("Syncing %d queued item(s) to remote store...", pending)
        attempted: set[str] = set()
        blocked: set[str] = set()
        synced = failed = 0

        while True:
            item = self._next_pending(attempted, blocked)
            if item is None:
                break
            attempted.add(item.id)

            if self._replay(item):
                with self._lock:
                    self._commit([i for i in self._items if i.id != item.id])
                synced += 1
                logger.info("Synced to remote store: %s (%s)", item.collection, item.id)
                continue

            failed += 1
            with self._lock:
                items = [
                    replace(i, retry_count=i.retry_count + 1) if i.id == item.id else i
                    for i in self._items
                ]
                self._commit(items)
                updated = next((i for i in items if i.id == item.id), None)

            if updated is not None and updated.exhausted:
                logger.error(
                    "Max retries exceeded: %s (%s), keeping it queued",
                    updated.collection,
                    updated.id,
                )
            else:
                blocked.add(item.collection)

        remaining = self.get_queue_size()
        if remaining == 0:
            logger.info("All queued changes synced to remote store (%d synced)", synced)
        else:
            logger.info(
                "Drain finished: %d synced, %d failed, %d item(s) still waiting",
                synced,
                failed,
                remaining,
            )

    def _replay(self, item: SyncItem) -> bool:
        """Write one item to the remote store.

        Returns:
            True if the remote store confirmed the write.
        """
        key = item.conflict_key
        try:
            if item.filters is not None:
                self._remote.update(item.collection, item.filters, item.payload)
            elif key is not None:
                self._remote.upsert(item.collection, item.payload, key)
            else:
                self._remote.insert(item.collection, [item.payload])
        except RemoteUnavailableError as e:
            logger.warning("Sync error: %s (%s): %s", item.collection, item.id, e)
            if self._monitor is not None:
                self._monitor.report_network_error(e)
            return False
        except Exception as e:
            logger.warning("Sync error: %s (%s): %s", item.collection, item.id, e)
            return False
        return True

    def retry_all(self) -> None:
        """Reset every item's retry counter and drain immediately."""
        with self._lock:
            logger.info("Retrying all %d queued item(s)", len(self._items))
            self._commit([replace(i, retry_count=0) for i in self._items])
        self.drain()

    def clear(self) -> int:
        """Remove all items from the queue.

        Returns:
            Number of items removed.
        """
        with self._lock:
            count = len(self._items)
            self._commit([])
        logger.info("Cleared %d item(s) from sync queue", count)
        return count

    def get_queue(self) -> list[SyncItem]:
        """Get a copy of the pending items, oldest first."""
        with self._lock:
            return [SyncItem.from_dict(item.to_dict()) for item in self._items]

    def get_queue_size(self) -> int:
        """Get the number of pending items."""
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.get_queue_size()

    def stats(self) -> dict[str, int]:
        """Get queue statistics.

        Returns:
            Total, exhausted and per-collection item counts.
        """
        with self._lock:
            per_collection = Counter(item.collection for item in self._items)
            stats = {
                "total": len(self._items),
                "exhausted": sum(1 for item in self._items if item.exhausted),
            }
        stats.update(per_collection)
        return stats

    @property
    def is_draining(self) -> bool:
        """Check whether a drain is currently running."""
        return self._drain_lock.locked()

    # === Background draining ===

    def _on_connectivity_change(self, status: ConnectivityStatus) -> None:
        if status.use_remote and self.get_queue_size() > 0:
            logger.info("Remote store back online, syncing %d queued item(s)", self.get_queue_size())
            self._schedule_drain()

    def _schedule_drain(self) -> None:
        """Start a background drain unless one is already pending."""
        with self._lock:
            self._drain_requested = True
            if self._drain_thread is not None:
                return
            thread = threading.Thread(
                target=self._background_drain,
                name="DurableQueueDrain",
                daemon=True,
            )
            self._drain_thread = thread
            thread.start()

    def _background_drain(self) -> None:
        while True:
            with self._lock:
                self._drain_requested = False
            try:
                # Waits out a foreground drain, which may have finished its
                # pass before the item that scheduled this one was queued
                with self._drain_lock:
                    self._drain()
            except Exception:
                logger.exception("Background drain failed")
            with self._lock:
                usable = self._monitor is None or self._monitor.should_use_remote()
                if not (self._drain_requested and usable):
                    self._drain_thread = None
                    return

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        """Wait for a background drain to finish.

        Args:
            timeout: Maximum seconds to wait (None = wait forever).

        Returns:
            True if no background drain is running anymore.
        """
        with self._lock:
            thread = self._drain_thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def close(self) -> None:
        """Stop listening for connectivity changes and finish any drain."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.wait_for_drain(timeout=30.0)
        logger.debug("Sync queue closed")
