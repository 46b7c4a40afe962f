"""Tests for the durable sync queue."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING, Any

import pytest

from pharmasync.client.api import RemoteRejectedError, RemoteUnavailableError
from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.state import KeyValueStore, PersistenceError
from pharmasync.client.sync.queue import DEFAULT_STORAGE_KEY, DurableQueue
from pharmasync.client.sync.types import InvalidCollectionError, SyncItem

if TYPE_CHECKING:
    from conftest import FakeRemoteStore


@pytest.fixture
def manual_queue(store: KeyValueStore, remote: FakeRemoteStore) -> DurableQueue:
    """Queue without a monitor: drains only when asked."""
    return DurableQueue(store, remote)


class TestSyncItem:
    """Tests for SyncItem dataclass."""

    def test_defaults(self) -> None:
        """New items should have a uuid4 hex id and no retries."""
        item = SyncItem("products", {"product_id": 1})
        assert len(item.id) == 32
        assert item.retry_count == 0
        assert item.max_retries == 3
        assert item.exhausted is False

    def test_unique_ids(self) -> None:
        """Ids should be unique."""
        ids = {SyncItem("products", {}).id for _ in range(100)}
        assert len(ids) == 100

    def test_conflict_key(self) -> None:
        """Keyed collections should expose their key when the payload has it."""
        assert SyncItem("products", {"product_id": 1}).conflict_key == "product_id"
        assert SyncItem("products", {"name": "x"}).conflict_key is None
        assert SyncItem("auditlogs", {"user_id": 1}).conflict_key is None

    def test_exhausted(self) -> None:
        """Items at max_retries should be exhausted."""
        assert SyncItem("products", {}, retry_count=3, max_retries=3).exhausted is True

    def test_from_dict_restores_fields(self) -> None:
        """from_dict should restore a persisted item."""
        item = SyncItem("products", {"product_id": 7}, retry_count=2)
        restored = SyncItem.from_dict(json.loads(json.dumps(item.to_dict())))

        assert restored == item

    def test_update_item(self) -> None:
        """Items with filters are patches and never upsert."""
        item = SyncItem("users", {"role": "admin"}, filters={"username": "ana"})
        restored = SyncItem.from_dict(json.loads(json.dumps(item.to_dict())))

        assert item.is_update is True
        assert item.conflict_key is None
        assert restored.filters == {"username": "ana"}
        assert SyncItem("users", {"user_id": 1}).is_update is False


class TestEnqueue:
    """Tests for enqueue."""

    def test_enqueue_appends(self, manual_queue: DurableQueue) -> None:
        """Items should be kept oldest first."""
        manual_queue.enqueue("products", {"product_id": 1})
        manual_queue.enqueue("users", {"user_id": 2})

        assert [i.collection for i in manual_queue.get_queue()] == ["products", "users"]
        assert len(manual_queue) == 2

    def test_invalid_collection(self, manual_queue: DurableQueue) -> None:
        """Malformed names should raise InvalidCollectionError."""
        with pytest.raises(InvalidCollectionError):
            manual_queue.enqueue("Products; DROP", {})
        with pytest.raises(ValueError):
            manual_queue.enqueue("", {})
        assert manual_queue.get_queue_size() == 0

    def test_payload_is_copied(self, manual_queue: DurableQueue) -> None:
        """Later changes to the caller's dict should not leak into the queue."""
        payload: dict[str, Any] = {"product_id": 1, "tags": ["a"]}
        manual_queue.enqueue("products", payload)
        payload["tags"].append("b")

        assert manual_queue.get_queue()[0].payload == {"product_id": 1, "tags": ["a"]}

    def test_custom_max_retries(self, manual_queue: DurableQueue) -> None:
        """Per-item retry budgets should be kept."""
        item = manual_queue.enqueue("products", {"product_id": 1}, max_retries=5)
        assert item.max_retries == 5

    def test_get_queue_returns_copies(self, manual_queue: DurableQueue) -> None:
        """Mutating a returned item should not change the queue."""
        manual_queue.enqueue("products", {"product_id": 1})
        manual_queue.get_queue()[0].payload["product_id"] = 99

        assert manual_queue.get_queue()[0].payload["product_id"] == 1


class TestPersistence:
    """Tests for durability."""

    def test_survives_restart(self, store: KeyValueStore, remote: FakeRemoteStore) -> None:
        """A new queue on the same store should see earlier items."""
        first = DurableQueue(store, remote)
        item = first.enqueue("products", {"product_id": 42})

        second = DurableQueue(store, remote)
        assert [i.id for i in second.get_queue()] == [item.id]

    def test_persisted_as_json(self, store: KeyValueStore, manual_queue: DurableQueue) -> None:
        """The queue should be stored as a JSON array."""
        manual_queue.enqueue("products", {"product_id": 42})

        data = json.loads(store.load(DEFAULT_STORAGE_KEY) or b"")
        assert data[0]["collection"] == "products"
        assert data[0]["payload"] == {"product_id": 42}

    def test_corrupt_queue_raises(self, store: KeyValueStore, remote: FakeRemoteStore) -> None:
        """An unreadable persisted queue should raise PersistenceError."""
        store.save(DEFAULT_STORAGE_KEY, b"{not json")

        with pytest.raises(PersistenceError):
            DurableQueue(store, remote)

    def test_failed_persist_leaves_queue_unchanged(
        self, store: KeyValueStore, manual_queue: DurableQueue
    ) -> None:
        """If the store cannot be written, enqueue raises and nothing is added."""
        manual_queue.enqueue("products", {"product_id": 1})
        store.close()

        with pytest.raises(PersistenceError):
            manual_queue.enqueue("products", {"product_id": 2})
        assert manual_queue.get_queue_size() == 1

    def test_clear(
        self, store: KeyValueStore, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """clear() should empty the queue durably."""
        manual_queue.enqueue("products", {"product_id": 1})
        manual_queue.enqueue("products", {"product_id": 2})

        assert manual_queue.clear() == 2
        assert DurableQueue(store, remote).get_queue_size() == 0


class TestDrain:
    """Tests for replaying queued items."""

    def test_drain_upserts_keyed_and_inserts_others(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """Keyed collections upsert, others insert."""
        manual_queue.enqueue("products", {"product_id": 1, "name": "A"})
        manual_queue.enqueue("auditlogs", {"action_performed": "login"})

        manual_queue.drain()

        assert manual_queue.get_queue_size() == 0
        assert remote.calls == [("upsert", "products"), ("insert", "auditlogs")]

    def test_drain_is_idempotent_for_keyed_items(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """Replaying the same keyed record twice should leave one row."""
        manual_queue.enqueue("products", {"product_id": 42, "name": "A"})
        manual_queue.enqueue("products", {"product_id": 42, "name": "B"})

        manual_queue.drain()

        assert remote.rows("products") == [{"product_id": 42, "name": "B"}]

    def test_drain_preserves_order(self, remote: FakeRemoteStore, manual_queue: DurableQueue) -> None:
        """Items should be replayed oldest first."""
        for n in range(5):
            manual_queue.enqueue("auditlogs", {"action_performed": f"a{n}"})

        manual_queue.drain()

        assert [r["action_performed"] for r in remote.rows("auditlogs")] == [
            "a0", "a1", "a2", "a3", "a4"
        ]

    def test_failure_increments_retry_and_keeps_item(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """A failed replay keeps the item with one more retry."""
        remote.fail_with = RemoteRejectedError("bad row", 400)
        manual_queue.enqueue("products", {"product_id": 1})

        manual_queue.drain()

        items = manual_queue.get_queue()
        assert len(items) == 1
        assert items[0].retry_count == 1

    def test_failure_blocks_same_collection_only(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """Later items of a failed collection wait; other collections proceed."""
        remote.fail_with = RemoteRejectedError("bad row", 400)
        remote.fail_collections = {"products"}
        manual_queue.enqueue("products", {"product_id": 1})
        manual_queue.enqueue("products", {"product_id": 2})
        manual_queue.enqueue("users", {"user_id": 3})

        manual_queue.drain()

        assert [i.payload for i in manual_queue.get_queue()] == [
            {"product_id": 1},
            {"product_id": 2},
        ]
        assert [i.retry_count for i in manual_queue.get_queue()] == [1, 0]
        assert remote.rows("users") == [{"user_id": 3}]

    def test_exhausted_items_are_kept_and_skipped(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """Items reaching max_retries stay queued and stop blocking."""
        remote.fail_with = RemoteRejectedError("bad row", 400)
        remote.fail_collections = {"products"}
        manual_queue.enqueue("products", {"product_id": 1}, max_retries=1)

        manual_queue.drain()
        manual_queue.enqueue("products", {"product_id": 2})
        remote.fail_collections = {"nothing"}
        manual_queue.drain()

        items = manual_queue.get_queue()
        assert [i.payload["product_id"] for i in items] == [1]
        assert items[0].exhausted is True
        assert manual_queue.stats()["exhausted"] == 1
        assert remote.rows("products") == [{"product_id": 2}]

    def test_retry_all_resets_exhausted(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """retry_all() should reset counters and replay everything."""
        remote.fail_with = RemoteRejectedError("bad row", 400)
        manual_queue.enqueue("products", {"product_id": 1}, max_retries=1)
        manual_queue.drain()
        assert manual_queue.get_queue()[0].exhausted

        remote.fail_with = None
        manual_queue.retry_all()

        assert manual_queue.get_queue_size() == 0
        assert remote.rows("products") == [{"product_id": 1}]

    def test_unavailable_reports_to_monitor(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        """Network failures during replay should mark the monitor offline."""
        monitor.check_now()
        remote.fail_with = RemoteUnavailableError("refused")

        queue.enqueue("products", {"product_id": 1})
        assert queue.wait_for_drain(timeout=5.0)

        assert monitor.should_use_remote() is False
        assert queue.get_queue()[0].retry_count == 1

    def test_items_enqueued_during_drain_are_included(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """An item added while draining should be replayed by the same drain."""
        original_insert = remote.insert
        added: list[SyncItem] = []

        def insert_and_enqueue(collection: str, records: list[dict[str, Any]]) -> None:
            original_insert(collection, records)
            if not added:
                added.append(manual_queue.enqueue("auditlogs", {"action_performed": "late"}))

        remote.insert = insert_and_enqueue  # type: ignore[method-assign]
        manual_queue.enqueue("auditlogs", {"action_performed": "first"})

        manual_queue.drain()

        assert manual_queue.get_queue_size() == 0
        assert [r["action_performed"] for r in remote.rows("auditlogs")] == ["first", "late"]

    def test_update_items_replay_as_patch(
        self, remote: FakeRemoteStore, manual_queue: DurableQueue
    ) -> None:
        """A queued patch should update matching rows, not insert."""
        remote.tables["damageditems"].append({"damaged_item_id": 3, "quantity": 4})
        manual_queue.enqueue("damageditems", {"quantity": 2}, filters={"damaged_item_id": 3})

        manual_queue.drain()

        assert remote.calls == [("update", "damageditems")]
        assert remote.rows("damageditems") == [{"damaged_item_id": 3, "quantity": 2}]
        assert manual_queue.get_queue_size() == 0

    def test_empty_update_filters_rejected(self, manual_queue: DurableQueue) -> None:
        """A patch without filters would touch every row."""
        with pytest.raises(ValueError):
            manual_queue.enqueue("products", {"price": 1}, filters={})

    def test_drain_is_single_flight(self, remote: FakeRemoteStore, manual_queue: DurableQueue) -> None:
        """A drain requested while one runs should be a no-op."""
        entered = threading.Event()
        release = threading.Event()
        original_upsert = remote.upsert

        def slow_upsert(collection: str, record: dict[str, Any], key: str) -> None:
            entered.set()
            release.wait(5.0)
            original_upsert(collection, record, key)

        remote.upsert = slow_upsert  # type: ignore[method-assign]
        manual_queue.enqueue("products", {"product_id": 1})

        worker = threading.Thread(target=manual_queue.drain)
        worker.start()
        assert entered.wait(5.0)
        assert manual_queue.is_draining is True

        manual_queue.drain()
        release.set()
        worker.join(5.0)

        assert remote.calls == [("upsert", "products")]
        assert remote.rows("products") == [{"product_id": 1}]
        assert manual_queue.get_queue_size() == 0


class TestAutoDrain:
    """Tests for draining driven by the connectivity monitor."""

    def test_drains_on_reconnect(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        """Going online should replay queued items in the background."""
        queue.enqueue("products", {"product_id": 42})
        assert queue.get_queue_size() == 1

        monitor.check_now()
        assert queue.wait_for_drain(timeout=5.0)

        assert queue.get_queue_size() == 0
        assert remote.rows("products") == [{"product_id": 42}]

    def test_enqueue_while_online_drains(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        """Enqueueing while the store is usable should trigger a drain."""
        monitor.check_now()
        queue.wait_for_drain(timeout=5.0)

        queue.enqueue("auditlogs", {"action_performed": "login"})
        assert queue.wait_for_drain(timeout=5.0)

        assert queue.get_queue_size() == 0

    def test_no_drain_while_offline(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
    ) -> None:
        """Nothing should be replayed while the monitor is offline."""
        queue.enqueue("products", {"product_id": 1})

        assert queue.wait_for_drain(timeout=1.0)
        assert remote.calls == []
        assert queue.get_queue_size() == 1

    def test_item_queued_at_end_of_foreground_drain(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        """An item queued while a foreground drain finishes should still sync."""
        monitor.check_now()
        queue.wait_for_drain(timeout=5.0)

        # A foreground drain that has already finished its pass
        queue._drain_lock.acquire()
        try:
            queue.enqueue("products", {"product_id": 7})
            assert queue.wait_for_drain(timeout=0.2) is False
        finally:
            queue._drain_lock.release()

        assert queue.wait_for_drain(timeout=5.0)
        assert queue.get_queue_size() == 0
        assert remote.rows("products") == [{"product_id": 7}]
