"""Shared types for pharmasync.

This module defines types and enums used across the sync components.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SyncState(str, Enum):
    """Overall sync state, as shown by the CLI."""

    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    OFFLINE = "offline"


@dataclass(frozen=True)
class ConnectivityStatus:
    """Last known reachability of the remote store.

    Attributes:
        is_online: Raw network reachability.
        use_remote: Reachable and the remote client is configured.
        last_checked_at: When the status was last evaluated (UTC).
    """

    is_online: bool
    use_remote: bool
    last_checked_at: datetime

    def same_state(self, other: ConnectivityStatus) -> bool:
        """Compare ignoring the timestamp."""
        return (self.is_online, self.use_remote) == (other.is_online, other.use_remote)


class WriteOutcome(str, Enum):
    """Result of a routed write.

    COMMITTED means confirmed by the remote store. DEFERRED means the
    write is durably queued and will be replayed.
    """

    COMMITTED = "committed"
    DEFERRED = "deferred"


class WriteLocation(str, Enum):
    """Where a routed write ended up."""

    REMOTE = "remote"
    QUEUED = "queued"
    LOCAL_FALLBACK = "local_fallback"
