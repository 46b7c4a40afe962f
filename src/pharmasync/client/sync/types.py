"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, InvalidCollectionError: Exception classes
- SyncItem: A write (upsert, insert or patch) waiting to be replayed
  against the remote store
- WriteResult: Outcome of a routed write
- CONFLICT_KEYS: Upsert key per collection
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pharmasync.core.types import WriteLocation, WriteOutcome

# Collections replayed with an upsert on this column. Every other
# collection is insert-only.
CONFLICT_KEYS: dict[str, str] = {
    "products": "product_id",
    "users": "user_id",
    "settings": "setting_key",
    "discounts": "discount_id",
    "stock_entries": "stock_entry_id",
    "pos_sales": "sale_id",
    "notifications": "notification_id",
}

_COLLECTION_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class SyncError(Exception):
    """Base exception for sync errors."""


class InvalidCollectionError(SyncError, ValueError):
    """Collection name is not a valid table identifier."""


def validate_collection(collection: str) -> str:
    """Check that a collection name is a plain lowercase identifier.

    Args:
        collection: Table name.

    Returns:
        The same name.

    Raises:
        InvalidCollectionError: If the name is malformed.
    """
    if not isinstance(collection, str) or not _COLLECTION_RE.match(collection):
        raise InvalidCollectionError(f"Invalid collection name: {collection!r}")
    return collection


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncItem:
    """A write waiting to be confirmed against the remote store.

    Attributes:
        id: Unique item id (uuid4 hex).
        collection: Target table.
        payload: Record to write.
        enqueued_at: When the item was queued (UTC).
        retry_count: Failed replay attempts so far.
        max_retries: Attempts after which the item is reported as exhausted.
        filters: Equality filters of a queued patch. When set, ``payload``
            is the patch and the item is replayed as an update.
    """

    collection: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = field(default_factory=_utcnow)
    retry_count: int = 0
    max_retries: int = 3
    filters: dict[str, Any] | None = None

    @property
    def exhausted(self) -> bool:
        """Check whether the retry budget is used up."""
        return self.retry_count >= self.max_retries

    @property
    def is_update(self) -> bool:
        """Check whether the item patches existing rows."""
        return self.filters is not None

    @property
    def conflict_key(self) -> str | None:
        """Get the upsert key, if the payload carries it."""
        if self.filters is not None:
            return None
        key = CONFLICT_KEYS.get(self.collection)
        if key is None or self.payload.get(key) is None:
            return None
        return key

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "collection": self.collection,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "filters": self.filters,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncItem:
        """Create from a persisted dictionary."""
        filters = data.get("filters")
        return cls(
            id=data["id"],
            collection=data["collection"],
            payload=dict(data["payload"]),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            retry_count=int(data.get("retry_count", 0)),
            max_retries=int(data.get("max_retries", 3)),
            filters=dict(filters) if filters is not None else None,
        )

    def __repr__(self) -> str:
        return (
            f"SyncItem({self.collection}, id={self.id[:8]}, "
            f"retries={self.retry_count}/{self.max_retries})"
        )


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a routed write.

    Attributes:
        outcome: COMMITTED (confirmed remotely) or DEFERRED (queued).
        collection: Target table.
        location: Where the write ended up.
        item_ids: Queue item ids when the write was deferred.
    """

    outcome: WriteOutcome
    collection: str
    location: WriteLocation
    item_ids: tuple[str, ...] = ()

    @property
    def item_id(self) -> str | None:
        """Get the first queue item id, or None for a committed write."""
        return self.item_ids[0] if self.item_ids else None

    @property
    def committed(self) -> bool:
        """Check whether the remote store confirmed the write."""
        return self.outcome is WriteOutcome.COMMITTED

    @property
    def deferred(self) -> bool:
        """Check whether the write is waiting in the queue."""
        return self.outcome is WriteOutcome.DEFERRED
