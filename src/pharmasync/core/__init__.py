"""Core module - Shared configuration, types and time helpers."""

from pharmasync.core.config import BackendConfig, RemoteConfig, SyncSettings
from pharmasync.core.timezone import (
    PHARMACY_TZ,
    ensure_timestamp,
    format_timestamp,
    pharmacy_date_key,
    pharmacy_now,
)
from pharmasync.core.types import (
    ConnectivityStatus,
    SyncState,
    WriteLocation,
    WriteOutcome,
)

__all__ = [
    # Config
    "BackendConfig",
    "RemoteConfig",
    "SyncSettings",
    # Time
    "PHARMACY_TZ",
    "ensure_timestamp",
    "format_timestamp",
    "pharmacy_date_key",
    "pharmacy_now",
    # Types
    "ConnectivityStatus",
    "SyncState",
    "WriteLocation",
    "WriteOutcome",
]
