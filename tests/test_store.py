"""Tests for EntryStore: loading, saving with automatic backups, seeding."""

import json
import logging
import os
from pathlib import Path

import pytest

from conftest import write_json
from wikiportable.backups import BackupKind, BackupManager
from wikiportable.errors import CorruptDataError, InvalidPayloadError, IOFailureError
from wikiportable.logger import ErrorCode
from wikiportable.store import EntryStore, default_seed_entries, serialize_entries


class TestLoad:
    """Tests for EntryStore.load."""

    def test_missing_file_is_empty(self, store: EntryStore):
        assert store.load() == []
        assert not store.exists()

    def test_round_trips_saved_entries(self, store: EntryStore):
        entries = [{"id": 1, "title": "Page", "tags": ["a"], "content": "# Hi"}]
        store.write(entries)

        assert store.load() == entries

    def test_invalid_json(self, store: EntryStore, data_path: Path):
        data_path.parent.mkdir(parents=True)
        data_path.write_text("[{broken")

        with pytest.raises(CorruptDataError) as exc_info:
            store.load()

        assert exc_info.value.error_code == ErrorCode.STORE_CORRUPT

    def test_not_an_array(self, store: EntryStore, data_path: Path):
        write_json(data_path, {"id": 1})

        with pytest.raises(CorruptDataError, match="does not contain an array"):
            store.load()


class TestWrite:
    """Tests for EntryStore.write."""

    def test_first_save_takes_no_backup(self, store: EntryStore, backup_dir: Path):
        result = store.write([{"id": 1}])

        assert result.entry_count == 1
        assert result.backup is None
        assert not backup_dir.exists()

    def test_save_backs_up_previous_bytes(self, store: EntryStore, data_path: Path):
        write_json(data_path, [{"id": 1, "title": "old"}])
        previous = data_path.read_bytes()

        result = store.write([{"id": 1, "title": "new"}])

        assert result.backup is not None
        assert result.backup.kind == BackupKind.AUTO
        assert result.backup.filename.startswith("auto_")
        assert result.backup.path.read_bytes() == previous
        assert store.load() == [{"id": 1, "title": "new"}]

    def test_save_over_empty_store_takes_no_backup(self, store: EntryStore, data_path: Path, backup_dir: Path):
        write_json(data_path, [])

        result = store.write([{"id": 1}])

        assert result.backup is None
        assert not backup_dir.exists()

    def test_rejects_non_list_and_leaves_store_alone(
        self, store: EntryStore, data_path: Path, backup_dir: Path
    ):
        write_json(data_path, [{"id": 1}])
        before = data_path.read_bytes()

        for payload in ({"id": 1}, "text", 42, None):
            with pytest.raises(InvalidPayloadError):
                store.write(payload)

        assert data_path.read_bytes() == before
        assert not backup_dir.exists()

    def test_empty_overwrite_is_flagged(self, store: EntryStore, data_path: Path, caplog):
        write_json(data_path, [{"id": 1}, {"id": 2}])

        with caplog.at_level(logging.WARNING, logger="wikiportable"):
            result = store.write([])

        assert result.suspicious
        assert result.backup is not None
        assert json.loads(result.backup.path.read_text()) == [{"id": 1}, {"id": 2}]
        assert store.load() == []
        assert any(ErrorCode.STORE_EMPTY_OVERWRITE.value in r.getMessage() for r in caplog.records)

    def test_corrupt_previous_store_is_still_backed_up(self, store: EntryStore, data_path: Path):
        data_path.parent.mkdir(parents=True)
        data_path.write_text("[{half written")

        result = store.write([{"id": 1}])

        assert result.backup is not None
        assert result.backup.path.read_text() == "[{half written"
        assert not result.suspicious

    def test_unicode_written_as_utf8(self, store: EntryStore, data_path: Path):
        store.write([{"id": 1, "title": "日本語のページ"}])

        raw = data_path.read_bytes()
        assert "日本語のページ".encode("utf-8") in raw
        assert raw == serialize_entries([{"id": 1, "title": "日本語のページ"}])

    def test_key_order_preserved(self, store: EntryStore):
        store.write([{"title": "t", "id": 1, "content": "c"}])

        assert list(store.load()[0].keys()) == ["title", "id", "content"]

    def test_save_applies_retention(self, data_path: Path, backup_dir: Path, clock):
        backups = BackupManager(data_path, backup_dir, max_backups=3, clock=clock)
        store = EntryStore(data_path, backups=backups)
        for i in range(5):
            write_json(backup_dir / f"manual_20000101_00000{i}.json", [], mtime=1_600_000_000 + i)
        write_json(data_path, [{"id": 1}])

        result = store.write([{"id": 2}])

        remaining = {p.name for p in backup_dir.glob("*.json")}
        assert len(remaining) == 3
        assert result.backup.filename in remaining

    def test_without_backup_manager(self, data_path: Path):
        store = EntryStore(data_path)
        store.write([{"id": 1}])

        result = store.write([{"id": 2}])

        assert result.backup is None

    def test_write_failure(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = EntryStore(blocker / "wiki_data.json")

        with pytest.raises(IOFailureError) as exc_info:
            store.write([{"id": 1}])

        assert exc_info.value.error_code == ErrorCode.STORE_WRITE_FAILED

    def test_write_raw_is_exact(self, store: EntryStore, data_path: Path, backup_dir: Path):
        write_json(data_path, [{"id": 1}])

        store.write_raw(b'[{"id":9}]')

        assert data_path.read_bytes() == b'[{"id":9}]'
        assert not backup_dir.exists()


class TestAtomicWrites:
    """Writes through a temporary file when atomic_writes is enabled."""

    def test_atomic_write_replaces_file(self, data_path: Path, backups: BackupManager):
        store = EntryStore(data_path, backups=backups, atomic_writes=True)
        store.write([{"id": 1}])
        store.write([{"id": 2}])

        assert store.load() == [{"id": 2}]
        assert [p.name for p in data_path.parent.iterdir()] == [data_path.name]

    def test_failed_atomic_write_leaves_old_file(self, data_path: Path, monkeypatch):
        store = EntryStore(data_path, atomic_writes=True)
        store.write([{"id": 1}])
        before = data_path.read_bytes()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(IOFailureError):
            store.write([{"id": 2}])

        assert data_path.read_bytes() == before
        assert [p.name for p in data_path.parent.iterdir()] == [data_path.name]


class TestInitialize:
    """Tests for seeding a brand-new store."""

    def test_seeds_welcome_entry(self, store: EntryStore):
        assert store.initialize() is True

        entries = store.load()
        assert len(entries) == 1
        assert entries[0]["title"] == "Welcome to Portable Wiki"
        assert isinstance(entries[0]["id"], int)
        assert "manual" in entries[0]["tags"]

    def test_existing_store_untouched(self, store: EntryStore, data_path: Path):
        write_json(data_path, [])

        assert store.initialize() is False
        assert store.load() == []

    def test_custom_seed(self, store: EntryStore):
        store.initialize(seed=[{"id": 7, "title": "Start"}])

        assert store.load() == [{"id": 7, "title": "Start"}]

    def test_default_seed_is_fresh_each_call(self):
        first = default_seed_entries()
        first[0]["title"] = "changed"

        assert default_seed_entries()[0]["title"] == "Welcome to Portable Wiki"
