"""Change notification poller.

This module provides:
- ChangeListener: Base class for poller observers (override what you need)
- SnapshotSource: Protocol for fetching notification and stock rows
- RemoteSnapshotSource: SnapshotSource reading from a RemoteStore
- ChangePoller: Periodically diffs remote snapshots into change events

Each cycle:
    1. fetch notifications
    2. emit on_record_added for keys not seen last cycle
    3. emit on_record_removed for keys that disappeared
    4. replace the snapshot, emit on_snapshot_refreshed (always)
    5. fetch stock entries, emit on_low_stock with rows in range

A failed notification fetch ends the cycle early: the previous snapshot
is kept and stock is not fetched. A failed stock fetch is logged and does not affect steps 1-4.
Cycles never overlap: a poll requested while one is running is ignored.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from pharmasync.core.config import SyncSettings

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class ChangeListener:
    """Observer of poller events. All methods default to no-ops."""

    def on_record_added(self, record: Record) -> None:
        """Called for each record not present in the previous snapshot."""

    def on_record_removed(self, key: Any) -> None:
        """Called for each key present previously but not anymore."""

    def on_snapshot_refreshed(self, records: list[Record]) -> None:
        """Called once per successful cycle with every current record."""

    def on_low_stock(self, records: list[Record]) -> None:
        """Called once per cycle with the stock rows inside the low-stock range."""


class SnapshotSource(Protocol):
    """Provides the rows the poller observes."""

    def fetch_notifications(self) -> list[Record]: ...

    def fetch_stock_entries(self) -> list[Record]: ...


class RemoteSnapshotSource:
    """Reads notifications and stock entries from the remote store.

    ``before_fetch`` runs ahead of every notification fetch. The local
    backend uses it to generate notifications from inventory changes so
    the same cycle already sees them.
    """

    def __init__(
        self,
        remote: RemoteStore,
        notifications_collection: str = "notifications",
        stock_collection: str = "stock_entries",
        before_fetch: Callable[[], object] | None = None,
    ) -> None:
        self._remote = remote
        self._notifications = notifications_collection
        self._stock = stock_collection
        self._before_fetch = before_fetch

    def fetch_notifications(self) -> list[Record]:
        if self._before_fetch is not None:
            self._before_fetch()
        return self._remote.select(self._notifications)

    def fetch_stock_entries(self) -> list[Record]:
        return self._remote.select(self._stock)


def diff_snapshots(
    previous: dict[Any, Record],
    current: dict[Any, Record],
) -> tuple[list[Any], list[Any]]:
    """Compute added and removed keys between two snapshots.

    Args:
        previous: Last snapshot, keyed by record id.
        current: New snapshot, keyed by record id.

    Returns:
        Tuple of (added keys in current order, removed keys in previous order).
    """
    added = [key for key in current if key not in previous]
    removed = [key for key in previous if key not in current]
    return added, removed


class ChangePoller:
    """Turns periodic remote snapshots into change events.

    Usage:
        poller = ChangePoller(RemoteSnapshotSource(client))
        poller.subscribe(my_listener)
        poller.start()
        ...
        poller.stop()
    """

    def __init__(
        self,
        source: SnapshotSource,
        settings: SyncSettings | None = None,
        key_field: str = "notification_id",
        quantity_field: str = "quantity",
    ) -> None:
        """Initialize the poller.

        Args:
            source: Where snapshots come from.
            settings: Poll interval and low-stock range.
            key_field: Field identifying a notification.
            quantity_field: Stock quantity field.
        """
        settings = settings or SyncSettings()
        self._source = source
        self._interval = settings.poll_interval
        self._low_stock_range = (settings.low_stock_min, settings.low_stock_max)
        self._key_field = key_field
        self._quantity_field = quantity_field

        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self._snapshot: dict[Any, Record] = {}

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def is_polling(self) -> bool:
        """Check whether a cycle is in flight."""
        return self._cycle_lock.locked()

    @property
    def is_running(self) -> bool:
        """Check whether the background loop is active."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def snapshot(self) -> dict[Any, Record]:
        """Get a copy of the last observed snapshot."""
        with self._lock:
            return dict(self._snapshot)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, method: str, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                getattr(listener, method)(*args)
            except Exception:
                logger.exception("Change listener %s failed", method)

    # === Polling ===

    def poll_once(self) -> bool:
        """Run one poll cycle.

        Returns:
            False if a cycle was already in flight and this call was ignored.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Poll cycle already in flight, skipping")
            return False
        try:
            if self._poll_notifications():
                self._poll_low_stock()
        finally:
            self._cycle_lock.release()
        return True

    def _poll_notifications(self) -> bool:
        """Diff the notification snapshot.

        Returns:
            False if the fetch failed and the cycle should end.
        """
        try:
            records = self._source.fetch_notifications()
        except Exception as e:
            logger.error("Error fetching notifications: %s", e)
            return False

        current: dict[Any, Record] = {}
        for record in records:
            key = record.get(self._key_field)
            if key is None:
                logger.warning("Ignoring notification without %s", self._key_field)
                continue
            current[key] = record

        with self._lock:
            previous = self._snapshot
            self._snapshot = current

        added, removed = diff_snapshots(previous, current)
        for key in added:
            logger.info("New notification: %s", current[key].get("message", key))
            self._emit("on_record_added", current[key])
        for key in removed:
            logger.info("Notification removed: %s", key)
            self._emit("on_record_removed", key)

        self._emit("on_snapshot_refreshed", list(current.values()))
        return True

    def _poll_low_stock(self) -> None:
        try:
            entries = self._source.fetch_stock_entries()
        except Exception as e:
            logger.error("Error fetching low stock products: %s", e)
            return

        low, high = self._low_stock_range
        low_stock = [
            entry for entry in entries
            if low <= self._quantity(entry) <= high
        ]
        self._emit("on_low_stock", low_stock)

    def _quantity(self, entry: Record) -> float:
        """Read the stock quantity; missing or unparsable counts as 0."""
        try:
            return float(entry.get(self._quantity_field) or 0)
        except (TypeError, ValueError):
            return 0

    # === Lifecycle ===

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.poll_once()

    def start(self) -> None:
        """Start polling in a background thread."""
        if self.is_running:
            logger.warning("ChangePoller already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="ChangePoller",
            daemon=True,
        )
        self._thread.start()
        logger.info("Started change polling (every %.1fs)", self._interval)

    def stop(self) -> None:
        """Stop polling."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
            logger.info("Stopped change polling")

    def reset(self) -> None:
        """Stop polling and forget the last snapshot."""
        self.stop()
        with self._lock:
            self._snapshot = {}
