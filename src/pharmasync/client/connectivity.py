"""Connectivity monitoring for the remote store.

This module provides:
- ConnectivityMonitor: Single source of truth for "can we reach the remote
  store right now, and should we use it"

Architecture:
    probe thread ──► check_now() ──► status change ──► listeners
                                                        (DurableQueue drains)

The monitor never raises to callers: a failed or crashing probe simply
marks the store offline. After a failed probe, further probes are skipped
for a backoff window so an offline machine does not spam the network.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

from pharmasync.core.config import SyncSettings
from pharmasync.core.types import ConnectivityStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectivityStatus], None]

# Failure count recorded when another component reports a network error.
# Keeps the probe in backoff instead of immediately flipping back online.
REPORTED_ERROR_FAILURES = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectivityMonitor:
    """Tracks reachability of the remote store and notifies on transitions.

    Usage:
        monitor = ConnectivityMonitor(probe=client.health_check)
        unsubscribe = monitor.subscribe(on_change)
        monitor.start()
        ...
        if monitor.should_use_remote():
            ...
        monitor.stop()
    """

    def __init__(
        self,
        probe: Callable[[], bool] | None,
        remote_available: bool = True,
        settings: SyncSettings | None = None,
    ) -> None:
        """Initialize the monitor.

        The initial status is offline until the first probe succeeds.

        Args:
            probe: Returns True when the remote store answers. None means
                no remote store is configured.
            remote_available: Policy flag; False forces ``use_remote`` off.
            settings: Probe intervals and backoff.
        """
        settings = settings or SyncSettings()
        self._probe = probe
        self._remote_available = remote_available and probe is not None
        self._online_interval = settings.online_check_interval
        self._offline_interval = settings.offline_check_interval
        self._backoff = settings.probe_backoff

        self._lock = threading.RLock()
        self._check_lock = threading.Lock()
        # Held from a status change until its listeners have run, so
        # transitions are delivered in the order they happened
        self._notify_lock = threading.RLock()
        self._status = ConnectivityStatus(
            is_online=False,
            use_remote=False,
            last_checked_at=_utcnow(),
        )
        self._consecutive_failures = 0
        self._last_offline_at = 0.0
        self._listeners: list[StatusListener] = []

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    # === Status ===

    def get_status(self) -> ConnectivityStatus:
        """Get the last known status (no I/O)."""
        with self._lock:
            return self._status

    def should_use_remote(self) -> bool:
        """Check whether writes should go to the remote store."""
        return self.get_status().use_remote

    def is_connected(self) -> bool:
        """Check raw reachability."""
        return self.get_status().is_online

    @property
    def in_backoff(self) -> bool:
        """Check whether probes are currently being skipped."""
        with self._lock:
            if self._consecutive_failures == 0:
                return False
            return time.monotonic() - self._last_offline_at < self._backoff

    # === Subscriptions ===

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a callback fired on every status transition.

        Args:
            listener: Called with the new status.

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

    def _notify(self, status: ConnectivityStatus) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Connectivity listener failed")

    def _set_online(self, is_online: bool) -> None:
        """Update status and notify listeners if the state changed."""
        with self._notify_lock:
            with self._lock:
                previous = self._status
                self._status = ConnectivityStatus(
                    is_online=is_online,
                    use_remote=is_online and self._remote_available,
                    last_checked_at=_utcnow(),
                )
                changed = not previous.same_state(self._status)
                status = self._status

            if changed:
                if status.is_online:
                    logger.info("Remote store reachable (use_remote=%s)", status.use_remote)
                else:
                    logger.info("Remote store unreachable")
                self._notify(status)

    # === Probing ===

    def check_now(self, force: bool = False) -> ConnectivityStatus:
        """Probe the remote store once and update the status.

        Concurrent calls are collapsed: a check already in progress makes
        this call return the current status.

        Args:
            force: Ignore the failure backoff window.

        Returns:
            The status after the check.
        """
        if not self._check_lock.acquire(blocking=False):
            return self.get_status()

        try:
            if self._probe is None:
                self._set_online(False)
                return self.get_status()

            if not force and self.in_backoff:
                logger.debug("Skipping connectivity probe (backoff)")
                return self.get_status()

            try:
                reachable = bool(self._probe())
            except Exception as e:
                logger.debug("Connectivity probe raised: %s", e)
                reachable = False

            with self._lock:
                if reachable:
                    self._consecutive_failures = 0
                    self._last_offline_at = 0.0
                else:
                    self._consecutive_failures += 1
                    self._last_offline_at = time.monotonic()

            self._set_online(reachable)
            return self.get_status()
        finally:
            self._check_lock.release()

    def report_network_error(self, error: BaseException) -> None:
        """Mark the store offline after a transport failure seen elsewhere.

        Args:
            error: The failure, used for logging only.
        """
        with self._lock:
            was_online = self._status.is_online
            self._consecutive_failures = max(self._consecutive_failures, REPORTED_ERROR_FAILURES)
            self._last_offline_at = time.monotonic()
        if was_online:
            logger.warning("Network error reported, marking remote store offline: %s", error)
        self._set_online(False)

    def set_remote_available(self, available: bool) -> None:
        """Change the policy flag allowing use of the remote store."""
        with self._notify_lock:
            with self._lock:
                self._remote_available = available and self._probe is not None
                is_online = self._status.is_online
            self._set_online(is_online)

    # === Lifecycle ===

    def _next_interval(self) -> float:
        status = self.get_status()
        with self._lock:
            failing = self._consecutive_failures > 0
        if status.is_online and not failing:
            return self._online_interval
        return self._offline_interval

    def _run_loop(self) -> None:
        self.check_now()
        while not self._stop_event.wait(self._next_interval()):
            self.check_now()

    def start(self) -> None:
        """Start probing in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("ConnectivityMonitor already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="ConnectivityMonitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("ConnectivityMonitor started")

    def stop(self) -> None:
        """Stop probing."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("ConnectivityMonitor stopped")
