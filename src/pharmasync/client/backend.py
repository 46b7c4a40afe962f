"""HTTP client for the local pharmacy backend.

This module provides:
- LocalFallbackStore: Protocol for local persistence of artifacts
- BackupService: Protocol for triggering a database backup
- LocalBackendClient: httpx client implementing both against the PHP API
- BackupResult: Outcome of a backup request

The backend answers every call with a JSON body carrying a ``success``
flag, so HTTP 200 alone does not mean the write happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from pharmasync.core.config import BackendConfig

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base exception for local backend errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class BackupResult:
    """Result of a backup request.

    Attributes:
        success: The backend reported success.
        skipped: The backend declined because a recent backup exists.
        message: Human readable message from the backend.
        filename: Name of the created backup file.
        file_size: Size of the backup file in bytes.
    """

    success: bool
    skipped: bool = False
    message: str = ""
    filename: str | None = None
    file_size: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupResult:
        """Create from API response dictionary."""
        return cls(
            success=bool(data.get("success")),
            skipped=bool(data.get("skipped")),
            message=str(data.get("message") or ""),
            filename=data.get("filename") or None,
            file_size=int(data.get("file_size") or 0),
        )


class LocalFallbackStore(Protocol):
    """Local persistence used when the remote store cannot be."""

    def insert(self, collection: str, record: dict[str, Any]) -> bool: ...


class BackupService(Protocol):
    """Creates database backups."""

    def create_backup(self, user_id: int | None = None) -> BackupResult: ...


class LocalBackendClient:
    """HTTP client for the local pharmacy backend."""

    def __init__(
        self,
        config: BackendConfig,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the backend client.

        Args:
            config: Backend configuration.
            client: Pre-built httpx client (tests inject one).
        """
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.url,
            timeout=config.timeout,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> LocalBackendClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
        except httpx.TransportError as e:
            raise BackendError(f"POST {path} failed: {e}") from e
        return self._parse(f"POST {path}", response)

    def _parse(self, request: str, response: httpx.Response) -> dict[str, Any]:
        """Decode the JSON object the backend answers with."""
        if response.status_code >= 400:
            raise BackendError(f"{request} returned {response.status_code}", response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"{request} returned invalid JSON", response.status_code) from e
        if not isinstance(data, dict):
            raise BackendError(f"{request} returned unexpected body", response.status_code)
        return data

    def _get(self, path: str) -> dict[str, Any]:
        try:
            response = self._client.get(path)
        except httpx.TransportError as e:
            raise BackendError(f"GET {path} failed: {e}") from e
        return self._parse(f"GET {path}", response)

    def fetch_rows(self, path: str) -> list[dict[str, Any]]:
        """Read the ``data`` rows of a listing endpoint.

        Args:
            path: Endpoint path, e.g. ``/api/products/read.php``.

        Returns:
            The rows (a single object is returned as a one-row list).

        Raises:
            BackendError: If the backend is unreachable or reports failure.
        """
        data = self._get(path)
        if not data.get("success"):
            raise BackendError(f"GET {path} failed: {data.get('message') or 'no success flag'}")
        rows = data.get("data")
        if rows is None:
            return []
        if isinstance(rows, dict):
            return [rows]
        if not isinstance(rows, list):
            raise BackendError(f"GET {path} returned unexpected data")
        return rows

    def get_products(self) -> list[dict[str, Any]]:
        """Read every product from the local database."""
        return self.fetch_rows("/api/products/read.php")

    def get_sales(self) -> list[dict[str, Any]]:
        """Read every sale from the local database."""
        return self.fetch_rows("/api/sales/read.php")

    def get_users(self) -> list[dict[str, Any]]:
        """Read every user from the local database."""
        return self.fetch_rows("/api/users/read.php")

    def get_stock_entries(self) -> list[dict[str, Any]]:
        """Read every stock entry from the local database."""
        return self.fetch_rows("/api/inventory/stock_entries.php")

    def generate_notifications(self) -> bool:
        """Ask the backend to create notifications for expiring and low stock.

        Returns:
            True if the backend confirmed.
        """
        try:
            data = self._post("/api/reports/notifications.php", {"action": "generate"})
        except BackendError as e:
            logger.warning("Failed to generate notifications: %s", e)
            return False
        return bool(data.get("success"))

    def insert(self, collection: str, record: dict[str, Any]) -> bool:
        """Save a record in the local database.

        Args:
            collection: Table name.
            record: Row to save.

        Returns:
            True if the backend confirmed the write.
        """
        try:
            data = self._post(f"/api/{collection}/create.php", record)
        except BackendError as e:
            logger.warning("Failed to save to local backend: %s: %s", collection, e)
            return False
        if data.get("success"):
            logger.info("Saved to local backend: %s", collection)
            return True
        logger.warning("Local backend rejected %s: %s", collection, data.get("message"))
        return False

    def create_backup(self, user_id: int | None = None) -> BackupResult:
        """Ask the backend to create a database backup.

        Args:
            user_id: User the backup is attributed to (None for system runs).

        Returns:
            BackupResult from the backend.

        Raises:
            BackendError: If the backend could not be reached.
        """
        data = self._post("/api/backup/auto-backup.php", {"userId": user_id})
        return BackupResult.from_dict(data)
