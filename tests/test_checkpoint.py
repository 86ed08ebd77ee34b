"""Tests for the checkpoint store."""

import pytest

from listing_migration.exceptions import CheckpointError
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.task import ImportSettings, MigrationTask, Stage


class TestGetSet:
    def test_missing_key_returns_default(self, store: CheckpointStore) -> None:
        assert store.get("nothing") is None
        assert store.get("nothing", 5) == 5

    def test_set_then_get(self, store: CheckpointStore) -> None:
        store.set("import_start_time", 1718000000)
        store.set("stats", {"total": 10, "failed": 1})

        assert store.get("import_start_time") == 1718000000
        assert store.get("stats") == {"total": 10, "failed": 1}

    def test_overwrite_keeps_single_row(self, store: CheckpointStore) -> None:
        store.set("key", 1)
        store.set("key", 2)

        assert store.get_uncached("key") == 2

    def test_returned_values_are_copies(self, store: CheckpointStore) -> None:
        store.set("stats", {"total": 1})
        value = store.get("stats")
        value["total"] = 99

        assert store.get("stats") == {"total": 1}

    def test_values_are_namespaced_by_adapter(self, database) -> None:
        first = CheckpointStore(database, "first")
        second = CheckpointStore(database, "second")

        first.set("stats", {"total": 1})

        assert second.get("stats") is None


class TestCache:
    def test_get_serves_cached_value(self, database) -> None:
        reader = CheckpointStore(database, "fake")
        writer = CheckpointStore(database, "fake")

        writer.set("aborted", False)
        assert reader.get("aborted") is False

        writer.set("aborted", True)

        assert reader.get("aborted") is False
        assert reader.get_uncached("aborted") is True
        assert reader.get("aborted") is True

    def test_cached_miss_is_refreshed_by_get_uncached(self, database) -> None:
        reader = CheckpointStore(database, "fake")
        writer = CheckpointStore(database, "fake")

        assert reader.get("stats") is None
        writer.set("stats", {"total": 3})

        assert reader.get("stats") is None
        assert reader.get_uncached("stats") == {"total": 3}


class TestDeleteClear:
    def test_delete(self, store: CheckpointStore) -> None:
        store.set("key", "value")

        assert store.delete("key") is True
        assert store.delete("key") is False
        assert store.get("key") is None

    def test_clear_selected_keys(self, store: CheckpointStore) -> None:
        store.set("a", 1)
        store.set("b", 2)
        store.set("c", 3)

        assert store.clear(["a", "b"]) == 2
        assert store.get("a") is None
        assert store.get("c") == 3

    def test_clear_all_only_touches_own_adapter(self, database) -> None:
        mine = CheckpointStore(database, "mine")
        other = CheckpointStore(database, "other")
        mine.set("a", 1)
        other.set("a", 2)

        assert mine.clear() == 1
        assert other.get_uncached("a") == 2


class TestTaskAndSettings:
    def test_no_task_when_nothing_stored(self, store: CheckpointStore) -> None:
        assert store.load_task() is None

    def test_task_roundtrip(self, store: CheckpointStore) -> None:
        task = MigrationTask(adapter_id="fake", stage=Stage.PARSE_LISTINGS, offset=1000)
        task.extra["total_item_count"] = 124

        store.save_task(task)
        loaded = store.load_task()

        assert loaded == task

    def test_saving_none_finishes(self, store: CheckpointStore) -> None:
        store.save_task(MigrationTask(adapter_id="fake", stage=Stage.IMPORT_TAGS))
        store.save_task(None)

        assert store.load_task() is None

    def test_invalid_task_raises(self, store: CheckpointStore) -> None:
        store.set(CheckpointStore.CURRENT_TASK, {"adapter_id": "fake", "stage": "bogus"})

        with pytest.raises(CheckpointError):
            store.load_task()

    def test_settings_roundtrip_keeps_extra_fields(self, store: CheckpointStore) -> None:
        store.save_settings(ImportSettings(author_id=3, dry_run=True, listing_status="draft"))

        settings = store.load_settings()

        assert settings.author_id == 3
        assert settings.dry_run is True
        assert settings.listing_status == "draft"
