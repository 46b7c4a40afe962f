"""Bulk reconciliation of the local database into the remote store.

This module provides:
- SeedTable: How one local listing maps onto a remote collection
- SEED_TABLES: Products, sales, users and stock entries
- SeedResult, ConsistencyReport: Per-table outcomes
- LocalSeeder: Copies local rows to the remote store and compares counts

Seeding upserts every local row by the collection's conflict key, so it
can be repeated safely and the local database wins on conflicts. It
bypasses the sync queue: a table that cannot be read or written is
reported as failed and can simply be seeded again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from pharmasync.client.api import RemoteStoreError, RemoteUnavailableError
from pharmasync.client.backend import BackendError
from pharmasync.client.sync.types import CONFLICT_KEYS

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore
    from pharmasync.client.connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

Record = dict[str, Any]

OFFLINE_MESSAGE = "Remote store unavailable"


class LocalRecordSource(Protocol):
    """Reads listing endpoints of the local backend."""

    def fetch_rows(self, path: str) -> list[Record]: ...


def _first(row: Record, *names: str, default: Any = None) -> Any:
    """Get the first of several column spellings that holds a value."""
    for name in names:
        value = row.get(name)
        if value is not None and value != "":
            return value
    return default


def _int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(float(value))


def _float(value: Any) -> float:
    return float(value or 0)


def map_product(row: Record) -> Record:
    return {
        "product_id": _int(_first(row, "id", "ProductID")),
        "name": _first(row, "name", "ProductName"),
        "category": _first(row, "category", "CategoryName"),
        "price": _float(_first(row, "price", "UnitPrice")),
        "quantity": _int(_first(row, "quantity", "CurrentStock", default=0)),
        "expiry_date": _first(row, "expiry_date", "ExpirationDate"),
    }


def map_sale(row: Record) -> Record:
    return {
        "sale_id": _int(_first(row, "id", "SaleID")),
        "total_amount": _float(_first(row, "total_amount", "TotalAmount")),
        "discount_applied": _float(_first(row, "discount_applied", "DiscountApplied")),
        "final_amount": _float(_first(row, "final_amount", "FinalAmount")),
        "sale_date": _first(
            row,
            "sale_date",
            "TransactionDate",
            default=datetime.now(timezone.utc).isoformat(),
        ),
    }


def map_user(row: Record) -> Record:
    return {
        "user_id": _int(_first(row, "id", "UserID")),
        "username": _first(row, "username", "Username"),
        "email": _first(row, "email", "Email"),
        "role": _first(row, "role", "Role", default="staff"),
        "full_name": _first(row, "full_name", "FullName", default=""),
        "is_active": row.get("is_active") is not False and row.get("IsActive") is not False,
    }


def map_stock_entry(row: Record) -> Record:
    return {
        "stock_entry_id": _int(_first(row, "id", "StockEntryID")),
        "product_id": _int(_first(row, "product_id", "ProductID")),
        "quantity": _int(_first(row, "quantity", "Quantity")),
        "batch_number": _first(row, "batch_number", "BatchNumber", default=""),
        "expiration_date": _first(row, "expiration_date", "ExpirationDate"),
        "unit_price": _float(_first(row, "unit_price", "UnitPrice")),
    }


@dataclass(frozen=True)
class SeedTable:
    """A local listing endpoint and the remote collection it fills."""

    name: str
    local_path: str
    collection: str
    mapper: Callable[[Record], Record]

    @property
    def conflict_key(self) -> str:
        return CONFLICT_KEYS[self.collection]


SEED_TABLES: tuple[SeedTable, ...] = (
    SeedTable("products", "/api/products/read.php", "products", map_product),
    SeedTable("sales", "/api/sales/read.php", "pos_sales", map_sale),
    SeedTable("users", "/api/users/read.php", "users", map_user),
    SeedTable("stock", "/api/inventory/stock_entries.php", "stock_entries", map_stock_entry),
)

SEED_TABLE_NAMES: tuple[str, ...] = tuple(table.name for table in SEED_TABLES)


@dataclass
class SeedResult:
    """Outcome of seeding one table.

    Attributes:
        table: Seed table name.
        success: Every local row reached the remote store.
        count: Rows upserted.
        skipped: Local rows without a usable key.
        error: Why the table failed, if it did.
    """

    table: str
    success: bool
    count: int = 0
    skipped: int = 0
    error: str | None = None


@dataclass
class ConsistencyReport:
    """Row counts of one table on both sides."""

    table: str
    local: int | None = None
    remote: int | None = None
    error: str | None = None

    @property
    def consistent(self) -> bool:
        return self.error is None and self.local == self.remote

    @property
    def difference(self) -> int | None:
        if self.local is None or self.remote is None:
            return None
        return abs(self.local - self.remote)


class LocalSeeder:
    """Copies local tables to the remote store.

    Usage:
        seeder = LocalSeeder(backend, remote, monitor)
        results = seeder.seed()
        reports = seeder.verify()
    """

    def __init__(
        self,
        source: LocalRecordSource,
        remote: RemoteStore,
        monitor: ConnectivityMonitor | None = None,
        tables: Iterable[SeedTable] = SEED_TABLES,
    ) -> None:
        """Initialize the seeder.

        Args:
            source: Local backend listing endpoints.
            remote: Remote store to upsert into.
            monitor: Connectivity monitor. When it reports the remote store
                unusable, nothing is attempted.
            tables: Tables this seeder knows.
        """
        self._source = source
        self._remote = remote
        self._monitor = monitor
        self._tables = {table.name: table for table in tables}

    def _select(self, names: Iterable[str] | None) -> list[SeedTable]:
        if names is None:
            return list(self._tables.values())
        selected = []
        for name in names:
            if name not in self._tables:
                raise ValueError(f"Unknown seed table: {name!r}")
            selected.append(self._tables[name])
        return selected

    def _remote_usable(self) -> bool:
        return self._monitor is None or self._monitor.should_use_remote()

    def _report_unavailable(self, error: RemoteStoreError) -> None:
        if isinstance(error, RemoteUnavailableError) and self._monitor is not None:
            self._monitor.report_network_error(error)

    def seed(self, tables: Iterable[str] | None = None) -> dict[str, SeedResult]:
        """Upsert every local row of the given tables into the remote store.

        Args:
            tables: Seed table names (default: all).

        Returns:
            Result per table name.

        Raises:
            ValueError: If a table name is unknown.
        """
        selected = self._select(tables)
        if not self._remote_usable():
            logger.warning("Not seeding - remote store unavailable")
            return {
                table.name: SeedResult(table.name, success=False, error=OFFLINE_MESSAGE)
                for table in selected
            }

        results: dict[str, SeedResult] = {}
        for table in selected:
            results[table.name] = self._seed_table(table)

        succeeded = sum(1 for result in results.values() if result.success)
        logger.info("Seeding complete: %d/%d table(s) succeeded", succeeded, len(results))
        return results

    def _seed_table(self, table: SeedTable) -> SeedResult:
        logger.info("Seeding %s into %s...", table.name, table.collection)
        try:
            rows = self._source.fetch_rows(table.local_path)
        except BackendError as e:
            logger.error("Failed to read local %s: %s", table.name, e)
            return SeedResult(table.name, success=False, error=str(e))

        key = table.conflict_key
        count = skipped = 0
        for row in rows:
            try:
                record = table.mapper(row)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping unreadable %s row: %s", table.name, e)
                skipped += 1
                continue
            if record.get(key) is None:
                logger.warning("Skipping %s row without %s", table.name, key)
                skipped += 1
                continue
            try:
                self._remote.upsert(table.collection, record, key)
            except RemoteStoreError as e:
                logger.error("Failed to seed %s: %s", table.name, e)
                self._report_unavailable(e)
                return SeedResult(
                    table.name, success=False, count=count, skipped=skipped, error=str(e)
                )
            count += 1

        logger.info("Seeded %d %s row(s)", count, table.name)
        return SeedResult(table.name, success=skipped == 0, count=count, skipped=skipped)

    def verify(self, tables: Iterable[str] | None = None) -> dict[str, ConsistencyReport]:
        """Compare local and remote row counts.

        Args:
            tables: Seed table names (default: all).

        Returns:
            Report per table name.

        Raises:
            ValueError: If a table name is unknown.
        """
        selected = self._select(tables)
        if not self._remote_usable():
            return {
                table.name: ConsistencyReport(table.name, error=OFFLINE_MESSAGE)
                for table in selected
            }

        reports: dict[str, ConsistencyReport] = {}
        for table in selected:
            report = ConsistencyReport(table.name)
            try:
                report.local = len(self._source.fetch_rows(table.local_path))
                report.remote = self._remote.count(table.collection)
            except BackendError as e:
                report.error = str(e)
            except RemoteStoreError as e:
                self._report_unavailable(e)
                report.error = str(e)
            if report.error:
                logger.error("Error checking consistency for %s: %s", table.name, report.error)
            else:
                logger.info(
                    "%s consistency: %s (local %d, remote %d)",
                    table.name,
                    "ok" if report.consistent else "MISMATCH",
                    report.local,
                    report.remote,
                )
            reports[table.name] = report
        return reports
