"""Tests for the SQLite key-value store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from pharmasync.client.state import KeyValueStore, PersistenceError


class TestKeyValueStoreCreation:
    """Tests for KeyValueStore initialization."""

    def test_creates_database(self, tmp_path: Path) -> None:
        """Should create the database file."""
        db_path = tmp_path / "state.db"
        store = KeyValueStore(db_path)

        assert db_path.exists()
        assert store.path == str(db_path)
        store.close()

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        """Should create parent directories."""
        db_path = tmp_path / "nested" / "dir" / "state.db"
        store = KeyValueStore(db_path)

        assert db_path.exists()
        store.close()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Values should survive a reopen."""
        db_path = tmp_path / "state.db"

        store1 = KeyValueStore(db_path)
        store1.save("queue", b"[1, 2, 3]")
        store1.close()

        store2 = KeyValueStore(db_path)
        assert store2.load("queue") == b"[1, 2, 3]"
        store2.close()

    def test_unopenable_path_raises(self, tmp_path: Path) -> None:
        """Should raise PersistenceError when the file cannot be opened."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(PersistenceError):
            KeyValueStore(blocker / "state.db")


class TestKeyValueOperations:
    """Tests for load, save and delete."""

    def test_load_missing_returns_none(self, store: KeyValueStore) -> None:
        """Missing keys should load as None."""
        assert store.load("nothing") is None

    def test_save_replaces(self, store: KeyValueStore) -> None:
        """A second save should replace the first."""
        store.save("k", b"one")
        store.save("k", b"two")

        assert store.load("k") == b"two"
        assert store.keys() == ["k"]

    def test_delete(self, store: KeyValueStore) -> None:
        """Deleted keys should load as None; deleting twice is fine."""
        store.save("k", b"v")
        store.delete("k")
        store.delete("k")

        assert store.load("k") is None

    def test_keys_sorted(self, store: KeyValueStore) -> None:
        """keys() should list stored keys in order."""
        store.save("b", b"")
        store.save("a", b"")

        assert store.keys() == ["a", "b"]

    def test_closed_store_raises(self, tmp_path: Path) -> None:
        """Operations on a closed store should raise PersistenceError."""
        store = KeyValueStore(tmp_path / "state.db")
        store.close()

        with pytest.raises(PersistenceError):
            store.save("k", b"v")

    def test_concurrent_saves(self, store: KeyValueStore) -> None:
        """Concurrent writers should not corrupt the store."""

        def writer(n: int) -> None:
            for i in range(50):
                store.save(f"key-{n}", str(i).encode())

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.keys() == [f"key-{n}" for n in range(4)]
        assert all(store.load(f"key-{n}") == b"49" for n in range(4))
