"""Tests for durable state storage and the processing set repository."""
import json

import pytest

from docuploader.services.processing_set import ProcessingSetRepository
from docuploader.services.state_store import JsonFileStore, MemoryStore


class TestJsonFileStore:
    def test_survives_new_instance(self, tmp_path):
        path = tmp_path / "state" / "state.json"
        JsonFileStore(path).set("processing_docs:alice", "[1, 2]")

        assert JsonFileStore(path).get("processing_docs:alice") == "[1, 2]"

    def test_clear_removes_key(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        store.set("a", "1")
        store.set("b", "2")
        store.clear("a")

        assert json.loads(path.read_text(encoding="utf-8")) == {"b": "2"}

    def test_no_temp_file_left_behind(self, tmp_path):
        path = tmp_path / "state.json"
        JsonFileStore(path).set("a", "1")
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileStore(tmp_path / "absent.json").get("a") is None

    def test_corrupt_file_starts_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{oops", encoding="utf-8")
        store = JsonFileStore(path)

        assert store.get("a") is None
        store.set("a", "1")
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}

    def test_unchanged_value_does_not_rewrite(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        store.set("a", "1")
        path.unlink()

        store.set("a", "1")
        store.clear("missing")

        assert not path.exists()


class TestProcessingSetRepository:
    def test_round_trip_sorted(self):
        store = MemoryStore()
        repo = ProcessingSetRepository(store, "alice")

        repo.save({7, 3, 5})

        assert store.get("processing_docs:alice") == "[3, 5, 7]"
        assert repo.load() == {3, 5, 7}

    def test_users_are_isolated(self):
        store = MemoryStore()
        ProcessingSetRepository(store, "alice").save({1})
        assert ProcessingSetRepository(store, "bob").load() == frozenset()

    def test_empty_set_removes_key(self):
        store = MemoryStore({"processing_docs:alice": "[1]"})
        ProcessingSetRepository(store, "alice").save(set())
        assert store.get("processing_docs:alice") is None

    @pytest.mark.parametrize("raw", ["not json", '{"docnumbers": [1]}', "42"])
    def test_garbage_is_cleared(self, raw):
        store = MemoryStore({"processing_docs:alice": raw})

        assert ProcessingSetRepository(store, "alice").load() == frozenset()
        assert store.get("processing_docs:alice") is None

    def test_invalid_entries_are_skipped(self):
        store = MemoryStore({"processing_docs:alice": '[1, "2", "x", null]'})
        assert ProcessingSetRepository(store, "alice").load() == {1, 2}

    def test_user_required(self):
        with pytest.raises(ValueError):
            ProcessingSetRepository(MemoryStore(), "")
