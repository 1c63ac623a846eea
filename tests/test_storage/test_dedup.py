"""Tests for DedupStore — all tests use a temporary JSON file."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from mailwatch.storage.dedup import DedupStore, PersistenceWarning


class TestLoad:
    def test_missing_file_starts_empty_with_warning(self, tmp_path: Path) -> None:
        with pytest.warns(PersistenceWarning, match="not found"):
            store = DedupStore.load(tmp_path / "absent.json")
        assert len(store) == 0

    def test_corrupt_file_starts_empty_with_warning(self, tmp_path: Path) -> None:
        path = tmp_path / "processed.json"
        path.write_text("[not json", encoding="utf-8")

        with pytest.warns(PersistenceWarning, match="Could not read"):
            store = DedupStore.load(path)

        assert len(store) == 0

    def test_non_list_file_starts_empty_with_warning(self, tmp_path: Path) -> None:
        path = tmp_path / "processed.json"
        path.write_text('{"M1": true}', encoding="utf-8")

        with pytest.warns(PersistenceWarning):
            store = DedupStore.load(path)

        assert not store.contains("M1")

    def test_existing_ids_are_loaded_in_order(self, tmp_path: Path) -> None:
        path = tmp_path / "processed.json"
        path.write_text(json.dumps(["b", "a", "c"]), encoding="utf-8")

        store = DedupStore.load(path)

        assert list(store) == ["b", "a", "c"]
        assert store.contains("a")


class TestAdd:
    def test_add_writes_full_list_immediately(self, store: DedupStore) -> None:
        store.add("M1")
        store.add("M2")

        assert json.loads(store.path.read_text(encoding="utf-8")) == ["M1", "M2"]

    def test_add_is_idempotent(self, store: DedupStore) -> None:
        store.add("M1")
        store.add("M1")

        assert json.loads(store.path.read_text(encoding="utf-8")) == ["M1"]
        assert len(store) == 1

    def test_file_is_overwritten_not_appended(self, tmp_path: Path) -> None:
        path = tmp_path / "processed.json"
        path.write_text(json.dumps(["old"]), encoding="utf-8")
        store = DedupStore.load(path)

        store.add("new")

        assert json.loads(path.read_text(encoding="utf-8")) == ["old", "new"]

    def test_no_temp_file_left_behind(self, store: DedupStore) -> None:
        store.add("M1")
        assert [p.name for p in store.path.parent.iterdir()] == [store.path.name]

    def test_survives_reload(self, store: DedupStore) -> None:
        store.add("M1")
        assert DedupStore.load(store.path).contains("M1")

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        store = DedupStore(tmp_path / "data" / "processed.json")
        store.add("M1")
        assert store.path.exists()

    def test_failed_write_leaves_id_unrecorded(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("", encoding="utf-8")
        store = DedupStore(blocker / "processed.json")

        with pytest.raises(OSError):
            store.add("M1")

        assert not store.contains("M1")
        assert len(store) == 0


class TestDiscard:
    def test_discard_removes_and_flushes(self, store: DedupStore) -> None:
        store.add("M1")
        store.add("M2")

        assert store.discard("M1") is True

        assert not store.contains("M1")
        assert json.loads(store.path.read_text(encoding="utf-8")) == ["M2"]

    def test_discard_unknown_returns_false(self, store: DedupStore) -> None:
        assert store.discard("nope") is False
        assert not store.path.exists()

    def test_failed_write_keeps_id(self, store: DedupStore) -> None:
        store.add("M1")

        with patch("mailwatch.storage.dedup.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                store.discard("M1")

        assert store.contains("M1")
        assert json.loads(store.path.read_text(encoding="utf-8")) == ["M1"]


class TestContains:
    def test_in_operator(self, store: DedupStore) -> None:
        store.add("M1")
        assert "M1" in store
        assert "M2" not in store
