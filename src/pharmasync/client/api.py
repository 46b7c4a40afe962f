"""HTTP client for the remote store.

This module provides:
- RemoteStore: Protocol every remote store implementation satisfies
- RemoteStoreClient: httpx client for a PostgREST (Supabase) REST API
- Upsert, insert, update, select and count operations on tables
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from pharmasync.core.config import RemoteConfig

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class RemoteStoreError(Exception):
    """Base exception for remote store errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteStoreError):
    """Remote store could not be reached (network error or timeout)."""


class AuthenticationError(RemoteStoreError):
    """API key rejected."""


class ConflictError(RemoteStoreError):
    """Write violated a uniqueness constraint."""


class RemoteRejectedError(RemoteStoreError):
    """Remote store refused the request."""


class RemoteStore(Protocol):
    """Operations the sync components need from a remote store.

    Every write is idempotent when repeated with the same conflict key value.
    """

    def upsert(self, collection: str, record: Record, conflict_key: str) -> None: ...

    def insert(self, collection: str, records: list[Record]) -> None: ...

    def update(self, collection: str, filters: Record, patch: Record) -> None: ...

    def select(self, collection: str, filters: Record | None = None) -> list[Record]: ...

    def count(self, collection: str) -> int: ...

    def health_check(self) -> bool: ...


def _eq_filters(filters: Record) -> dict[str, str]:
    """Convert equality filters to PostgREST query parameters."""
    params: dict[str, str] = {}
    for column, value in filters.items():
        if isinstance(value, bool):
            value = str(value).lower()
        params[column] = f"eq.{value}"
    return params


class RemoteStoreClient:
    """HTTP client for a PostgREST table API."""

    def __init__(
        self,
        config: RemoteConfig,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the remote store client.

        Args:
            config: Remote store configuration (URL, key, timeout).
            client: Pre-built httpx client (tests inject one).
        """
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.rest_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={
                "apikey": config.api_key,
                "Authorization": f"Bearer {config.api_key}",
            },
        )

    @property
    def config(self) -> RemoteConfig:
        """Get the client configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> RemoteStoreClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(
        self,
        method: str,
        collection: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request, translating transport failures."""
        try:
            response = self._client.request(
                method,
                f"/{collection}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"{method} {collection} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code < 400:
            return response

        try:
            body = response.json()
            detail = body.get("message") or body.get("detail") or "Unknown error"
        except (ValueError, AttributeError):
            detail = response.text or "Unknown error"

        if response.status_code in (401, 403):
            raise AuthenticationError(detail, response.status_code)
        if response.status_code == 409:
            raise ConflictError(detail, 409)
        raise RemoteRejectedError(detail, response.status_code)

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the remote store answers a minimal query.

        Returns:
            True if the probe table could be read.
        """
        try:
            response = self._client.get(
                f"/{self._config.probe_collection}",
                params={"select": "*", "limit": "1"},
            )
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    # === Write operations ===

    def upsert(self, collection: str, record: Record, conflict_key: str) -> None:
        """Insert a record or merge it into the row with the same key.

        Args:
            collection: Table name.
            record: Row to write.
            conflict_key: Column used to detect an existing row.
        """
        self._request(
            "POST",
            collection,
            params={"on_conflict": conflict_key},
            json=record,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug("Upserted into %s on %s=%s", collection, conflict_key, record.get(conflict_key))

    def insert(self, collection: str, records: list[Record]) -> None:
        """Insert one or more rows.

        Args:
            collection: Table name.
            records: Rows to insert.
        """
        self._request(
            "POST",
            collection,
            json=records,
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Inserted %d row(s) into %s", len(records), collection)

    def update(self, collection: str, filters: Record, patch: Record) -> None:
        """Patch every row matching equality filters.

        Args:
            collection: Table name.
            filters: Column -> value equality filters.
            patch: Columns to set.
        """
        if not filters:
            raise ValueError("update requires at least one filter")
        self._request(
            "PATCH",
            collection,
            params=_eq_filters(filters),
            json=patch,
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Updated %s where %s", collection, filters)

    # === Read operations ===

    def select(self, collection: str, filters: Record | None = None) -> list[Record]:
        """Fetch rows from a table.

        Args:
            collection: Table name.
            filters: Optional column -> value equality filters.

        Returns:
            List of rows.
        """
        params = {"select": "*"}
        if filters:
            params.update(_eq_filters(filters))
        response = self._request("GET", collection, params=params)
        rows = response.json()
        if not isinstance(rows, list):
            raise RemoteRejectedError(f"Unexpected response for {collection}", response.status_code)
        return rows

    def count(self, collection: str) -> int:
        """Count the rows of a table without fetching them.

        Args:
            collection: Table name.

        Returns:
            Exact row count reported by the server.
        """
        response = self._request(
            "HEAD",
            collection,
            params={"select": "*"},
            headers={"Prefer": "count=exact"},
        )
        # Content-Range is "<range>/<total>", e.g. "*/42" or "0-24/42"
        total = response.headers.get("content-range", "").rpartition("/")[2]
        if not total.isdigit():
            raise RemoteRejectedError(
                f"No row count for {collection} in Content-Range", response.status_code
            )
        return int(total)
