"""Unit tests for the batched JSON usage store."""

import json
import os
import time
from pathlib import Path

import pytest

from earshot.errors import StorageError
from earshot.models.usage import UsageRecord
from earshot.storage.usage_store import UsageStore


def bump(record: UsageRecord) -> None:
    record.request_count += 1


@pytest.fixture
def store_path(temp_data_dir):
    return str(Path(temp_data_dir) / "usage.json")


@pytest.fixture
def make_store(temp_data_dir):
    """Build stores and stop their flush timers when the test ends."""
    stores = []

    def make(path, **kwargs) -> UsageStore:
        store = UsageStore(path, **kwargs)
        stores.append(store)
        return store

    yield make
    for store in stores:
        try:
            store.close()
        except StorageError:
            pass


@pytest.mark.unit
class TestUsageStore:

    def test_unknown_key_reads_as_zero(self, make_store, store_path):
        store = make_store(store_path)
        assert store.read("groq", "llama-3.1-8b-instant") == UsageRecord()

    def test_update_returns_copy(self, make_store, store_path):
        store = make_store(store_path)
        result = store.update("groq", "m", bump)
        result.request_count = 99

        assert store.read("groq", "m").request_count == 1

    def test_writes_are_batched(self, make_store, store_path):
        store = make_store(store_path, flush_every=5, flush_interval=60)
        for _ in range(4):
            store.update("groq", "m", bump)

        assert not os.path.exists(store_path)

        store.update("groq", "m", bump)
        assert os.path.exists(store_path)
        assert store.flush_count == 1

    def test_flush_persists_and_reloads(self, make_store, store_path):
        store = make_store(store_path, flush_every=100, flush_interval=60)
        store.update("gemini", "gemini-2.5-flash", bump)
        store.update("gemini", "gemini-2.5-flash", bump)
        store.flush()

        with open(store_path) as f:
            data = json.load(f)
        assert data["gemini:gemini-2.5-flash"]["request_count"] == 2
        assert not os.path.exists(store_path + ".tmp")

        reloaded = make_store(store_path)
        assert reloaded.read("gemini", "gemini-2.5-flash").request_count == 2

    def test_interval_flush(self, make_store, store_path):
        store = make_store(store_path, flush_every=100, flush_interval=0.05)
        store.update("groq", "m", bump)
        deadline = time.time() + 2.0
        while store.pending_writes and time.time() < deadline:
            time.sleep(0.01)

        assert os.path.exists(store_path)
        assert store.pending_writes == 0

    def test_flush_without_changes_does_not_write(self, make_store, store_path):
        store = make_store(store_path)
        store.flush()

        assert not os.path.exists(store_path)
        assert store.flush_count == 0

    def test_corrupt_file_starts_empty(self, make_store, store_path):
        with open(store_path, "w") as f:
            f.write("{not json")

        store = make_store(store_path)
        assert store.snapshot() == {}

    def test_clear_persists_empty_state(self, make_store, store_path):
        store = make_store(store_path)
        store.update("groq", "m", bump)
        store.clear()

        assert make_store(store_path).snapshot() == {}

    def test_unwritable_location_raises_storage_error(self, make_store, temp_data_dir):
        blocker = Path(temp_data_dir) / "blocker"
        blocker.write_text("a file, not a directory")
        store = make_store(str(blocker / "usage.json"), flush_every=1)

        with pytest.raises(StorageError):
            store.update("groq", "m", bump)
