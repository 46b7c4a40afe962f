"""Write routing for every mutating pharmacy operation.

This module provides:
- WriteRouter: The single choke point between application mutations and
  the remote store

Every operation follows the same protocol:

    should_use_remote()? ──no──► enqueue ──► DEFERRED
           │ yes
           ▼
    remote write ──ok──► COMMITTED
           │ RemoteStoreError
           ▼
    enqueue ──► DEFERRED

A write is therefore either confirmed by the remote store or durably
queued for replay. Being offline is never reported as an exception; only
persistence failures and programmer errors propagate.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pharmasync.client.api import RemoteStoreError, RemoteUnavailableError
from pharmasync.client.sync.types import CONFLICT_KEYS, WriteResult, validate_collection
from pharmasync.core.timezone import ensure_timestamp
from pharmasync.core.types import WriteLocation, WriteOutcome

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore
    from pharmasync.client.backend import LocalFallbackStore
    from pharmasync.client.connectivity import ConnectivityMonitor
    from pharmasync.client.sync.queue import DurableQueue

logger = logging.getLogger(__name__)

Record = dict[str, Any]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _compact(record: Record) -> Record:
    """Drop keys whose value is None."""
    return {k: v for k, v in record.items() if v is not None}


class WriteRouter:
    """Routes writes to the remote store or the durable queue."""

    def __init__(
        self,
        remote: RemoteStore,
        queue: DurableQueue,
        monitor: ConnectivityMonitor,
        local_store: LocalFallbackStore | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            remote: Remote store for immediate writes.
            queue: Durable queue for deferred writes.
            monitor: Connectivity monitor gating the remote leg.
            local_store: Optional local store for offline artifacts.
        """
        self._remote = remote
        self._queue = queue
        self._monitor = monitor
        self._local_store = local_store

    # === Routing protocol ===

    def _defer(
        self,
        collection: str,
        records: list[Record],
        filters: Record | None = None,
    ) -> WriteResult:
        items = [
            self._queue.enqueue(collection, record, filters=filters) for record in records
        ]
        return WriteResult(
            outcome=WriteOutcome.DEFERRED,
            collection=collection,
            location=WriteLocation.QUEUED,
            item_ids=tuple(item.id for item in items),
        )

    def _route(
        self,
        collection: str,
        remote_write: Callable[[], None],
        queued: list[Record],
        label: str,
        filters: Record | None = None,
    ) -> WriteResult:
        """Attempt the remote write, falling back to the queue.

        Args:
            collection: Target table.
            remote_write: Performs the write against the remote store.
            queued: Records to enqueue if the write cannot be confirmed.
            label: Description used in log messages.
            filters: Queue the records as patches of the rows matching
                these filters.
        """
        validate_collection(collection)

        if not self._monitor.should_use_remote():
            logger.info("Offline - queuing %s for later", label)
            return self._defer(collection, queued, filters)

        try:
            remote_write()
        except RemoteStoreError as e:
            logger.warning("Failed to save %s to remote store: %s", label, e)
            if isinstance(e, RemoteUnavailableError):
                self._monitor.report_network_error(e)
            return self._defer(collection, queued, filters)

        logger.info("Saved %s to remote store", label)
        return WriteResult(
            outcome=WriteOutcome.COMMITTED,
            collection=collection,
            location=WriteLocation.REMOTE,
        )

    # === Generic operations ===

    def write(self, collection: str, record: Record) -> WriteResult:
        """Save a record, upserting by the collection's conflict key.

        Collections without a conflict key (or records missing it) are
        inserted.
        """
        key = CONFLICT_KEYS.get(collection)
        if key is not None and record.get(key) is not None:
            return self._route(
                collection,
                lambda: self._remote.upsert(collection, record, key),
                [record],
                f"{collection} {key}={record[key]}",
            )
        return self._route(
            collection,
            lambda: self._remote.insert(collection, [record]),
            [record],
            collection,
        )

    def insert_many(self, collection: str, records: list[Record]) -> WriteResult:
        """Insert several rows in one remote call; queue each on failure."""
        return self._route(
            collection,
            lambda: self._remote.insert(collection, records),
            records,
            f"{len(records)} {collection} row(s)",
        )

    def update(self, collection: str, key: str, key_value: Any, patch: Record) -> WriteResult:
        """Patch the row identified by ``key == key_value``.

        Offline, a patch by the collection's conflict key is queued
        together with the key so its replay is an upsert of that row. A
        patch by any other column is queued with its filter and replayed
        as an update of the matching rows.
        """
        if CONFLICT_KEYS.get(collection) == key:
            queued, filters = {key: key_value, **patch}, None
        else:
            queued, filters = dict(patch), {key: key_value}
        return self._route(
            collection,
            lambda: self._remote.update(collection, {key: key_value}, patch),
            [queued],
            f"{collection} {key}={key_value} update",
            filters=filters,
        )

    # === Products ===

    def save_product(self, product: Record) -> WriteResult:
        """Add or update a product."""
        return self.write("products", product)

    def update_product(self, product_id: int, updates: Record) -> WriteResult:
        """Update product fields."""
        return self.update("products", "product_id", product_id, updates)

    def delete_product(self, product_id: int) -> WriteResult:
        """Soft-delete a product (``is_active = false``)."""
        return self.update("products", "product_id", product_id, {"is_active": False})

    # === Sales ===

    def save_sale(self, sale: Record) -> WriteResult:
        """Record a point-of-sale transaction."""
        return self.write("pos_sales", sale)

    def save_sale_items(self, sale_items: list[Record]) -> WriteResult:
        """Record the line items of a sale."""
        return self.insert_many("salestransaction", sale_items)

    # === Users ===

    def save_user(self, user: Record) -> WriteResult:
        """Add or update a user."""
        return self.write("users", user)

    def update_user_profile(self, user_id: int, profile: Record) -> WriteResult:
        """Update profile fields of a user."""
        patch = _compact({
            "full_name": profile.get("full_name") or profile.get("name"),
            "profile_image": profile.get("profile_image") or profile.get("image"),
            "email": profile.get("email"),
            "phone": profile.get("phone"),
            "updated_date": _now_iso(),
        })
        return self.update("users", "user_id", user_id, patch)

    # === Audit logs ===

    def save_audit_log(self, log: Record) -> WriteResult:
        """Record an audit log entry.

        The entry is mapped to the ``auditlogs`` schema (``user_id``,
        ``action_performed``, ``timestamp``) with a UTC+8 timestamp.
        """
        entry = {
            "user_id": log.get("user_id") or log.get("userId") or 1,
            "action_performed": log.get("action_performed") or log.get("action"),
            "timestamp": ensure_timestamp(log.get("timestamp")),
        }
        return self.write("auditlogs", entry)

    # === Stock ===

    def save_stock_entry(self, entry: Record) -> WriteResult:
        """Add a stock entry."""
        return self.write("stock_entries", entry)

    def update_stock_entry(self, stock_entry_id: int, updates: Record) -> WriteResult:
        """Update a stock entry."""
        return self.update("stock_entries", "stock_entry_id", stock_entry_id, updates)

    def save_damaged_item(self, damaged_item: Record) -> WriteResult:
        """Record a damaged item."""
        return self.write("damageditems", damaged_item)

    def save_change_item(self, change_item: Record) -> WriteResult:
        """Record a changed (exchanged) item."""
        return self.write("changeitem", change_item)

    def save_inventory_transaction(self, transaction: Record) -> WriteResult:
        """Record an inventory transaction."""
        return self.write("inventorytransactions", transaction)

    # === Discounts and settings ===

    def save_discount(self, discount: Record) -> WriteResult:
        """Create or update a discount."""
        now = _now_iso()
        is_active = discount.get("is_active")
        record = _compact({
            "discount_id": discount.get("discount_id") or discount.get("id"),
            "discount_name": discount.get("discount_name") or discount.get("name"),
            "discount_rate": discount.get("discount_rate") or discount.get("rate"),
            "is_active": True if is_active is None else is_active,
            "created_date": discount.get("created_date") or now,
            "updated_date": now,
        })
        return self.write("discounts", record)

    def delete_discount(self, discount_id: int) -> WriteResult:
        """Deactivate a discount."""
        return self.update("discounts", "discount_id", discount_id, {"is_active": False})

    def save_setting(self, setting_key: str, setting_value: str) -> WriteResult:
        """Store an application setting."""
        return self.write("settings", {
            "setting_key": setting_key,
            "setting_value": setting_value,
            "updated_at": _now_iso(),
        })

    # === Notifications ===

    def save_notification(self, notification: Record) -> WriteResult:
        """Store a notification."""
        is_read = notification.get("is_read")
        record = _compact({
            "notification_id": notification.get("notification_id") or notification.get("id"),
            "message": notification.get("message"),
            "notification_type": (
                notification.get("notification_type") or notification.get("type") or "info"
            ),
            "is_read": False if is_read is None else is_read,
            "created_date": notification.get("created_date") or _now_iso(),
            "user_id": notification.get("user_id"),
        })
        return self.write("notifications", record)

    def mark_notification_read(self, notification_id: int) -> WriteResult:
        """Mark a notification as read."""
        return self.update("notifications", "notification_id", notification_id, {"is_read": True})

    # === Backups, reports and receipts ===

    def save_backup_record(self, backup: Record) -> WriteResult:
        """Store backup metadata."""
        return self.write("backups", {
            "file_path": backup.get("file_path"),
            "google_drive_file_id": backup.get("google_drive_file_id"),
            "backup_date": backup.get("backup_date") or _now_iso(),
            "backup_type": backup.get("backup_type") or "Manual",
            "file_size": backup.get("file_size") or 0,
        })

    def save_backup_file(
        self,
        filename: str,
        file_size: int,
        backup_type: str = "Manual",
    ) -> WriteResult:
        """Record a backup file in the remote store only.

        Online, only the remote store receives the metadata. Offline, the
        metadata is queued and, when a local store is configured, also
        saved locally.

        Args:
            filename: Backup file name.
            file_size: Backup size in bytes.
            backup_type: "Manual" or "Auto".
        """
        record = {
            "file_path": filename,
            "backup_type": backup_type,
            "file_size": file_size,
            "backup_date": _now_iso(),
            "google_drive_file_id": None,
        }
        if self._monitor.should_use_remote() or self._local_store is None:
            return self.write("backups", record)

        logger.info("Offline - saving backup %s to local backend and queuing it", filename)
        result = self._defer("backups", [record])
        if self._local_store.insert("backups", record):
            return WriteResult(
                outcome=WriteOutcome.DEFERRED,
                collection="backups",
                location=WriteLocation.LOCAL_FALLBACK,
                item_ids=result.item_ids,
            )
        return result

    def save_report(self, filename: str, report_type: str, user_id: int) -> WriteResult:
        """Record a generated PDF report."""
        return self.write("reports", {
            "report_type": report_type,
            "generated_by": user_id,
            "generated_date": _now_iso(),
            "file_path": filename,
        })

    def save_csv_export(self, filename: str, export_type: str, user_id: int) -> WriteResult:
        """Record a CSV export (stored as a ``CSV_<type>`` report)."""
        return self.save_report(filename, f"CSV_{export_type}", user_id)

    def save_receipt(self, receipt_data: Record, sale_id: int, user_id: int) -> WriteResult:
        """Record a printed receipt."""
        now = _now_iso()
        return self.write("receipts", {
            "sale_id": sale_id,
            "receipt_number": f"RCP-{sale_id}-{int(time.time() * 1000)}",
            "receipt_date": now,
            "receipt_data": json.dumps(receipt_data, default=str),
            "printed_by": user_id,
            "print_date": now,
        })
