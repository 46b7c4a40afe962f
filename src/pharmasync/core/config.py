"""Shared configuration classes for pharmasync.

This module defines configuration classes used by the sync components
and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote store.

    The remote store is a PostgREST-style table service (Supabase).

    Attributes:
        url: Base URL of the project (e.g., "https://abc.supabase.co").
        api_key: API key sent as both ``apikey`` and bearer token.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        probe_collection: Table queried by connectivity probes.
    """

    url: str
    api_key: str
    timeout: float = 15.0
    verify_ssl: bool = True
    probe_collection: str = "categories"

    def __post_init__(self) -> None:
        """Normalize URL."""
        self.url = self.url.rstrip("/")

    @property
    def rest_url(self) -> str:
        """Get the REST endpoint root.

        Returns:
            URL of the ``/rest/v1`` API.
        """
        return f"{self.url}/rest/v1"

    @property
    def is_configured(self) -> bool:
        """Check that both URL and key are set."""
        return bool(self.url and self.api_key)


@dataclass
class BackendConfig:
    """Configuration for the local pharmacy backend.

    Attributes:
        url: Base URL of the backend (e.g., "http://localhost").
        timeout: Request timeout in seconds.
    """

    url: str
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize URL."""
        self.url = self.url.rstrip("/")


@dataclass
class SyncSettings:
    """Timing and threshold settings for the sync components.

    Attributes:
        online_check_interval: Seconds between probes while online.
        offline_check_interval: Seconds between probes while offline.
        probe_backoff: Seconds to skip probes after a failed one.
        poll_interval: Seconds between change poller cycles.
        low_stock_min: Inclusive lower bound of the low-stock range.
        low_stock_max: Inclusive upper bound of the low-stock range.
        max_retries: Default retry budget for queued writes.
        backup_hour: Hour (UTC+8) of the daily automatic backup.
        backup_minute: Minute of the daily automatic backup.
    """

    online_check_interval: float = 5.0
    offline_check_interval: float = 15.0
    probe_backoff: float = 30.0
    poll_interval: float = 3.0
    low_stock_min: int = 1
    low_stock_max: int = 10
    max_retries: int = 3
    backup_hour: int = 22
    backup_minute: int = 30

    def __post_init__(self) -> None:
        """Validate ranges."""
        if self.low_stock_min > self.low_stock_max:
            raise ValueError(
                f"low_stock_min ({self.low_stock_min}) must not exceed "
                f"low_stock_max ({self.low_stock_max})"
            )
        if not 0 <= self.backup_hour <= 23:
            raise ValueError(f"backup_hour out of range: {self.backup_hour}")
        if not 0 <= self.backup_minute <= 59:
            raise ValueError(f"backup_minute out of range: {self.backup_minute}")
