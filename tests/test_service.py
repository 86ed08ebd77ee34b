"""End-to-end tests for the polling migration service."""

import pytest
from fakes import FakeDirectoryAdapter, InMemoryWriter

from listing_migration.adapters.registry import AdapterRegistry
from listing_migration.config import MigrationConfig, StateConfig
from listing_migration.exceptions import AdapterError, LockBusyError, ValidationError
from listing_migration.migration.locking import SingleFlightLock, pipeline_lock_key
from listing_migration.migration.service import COMPLETED_MESSAGE, MigrationService
from listing_migration.migration.task import Stage

TOTAL_ITEMS = 124


class BrokenTermWriter(InMemoryWriter):
    def upsert_term(self, taxonomy, destination_id, data):
        if data["name"] == "Broken":
            raise ValueError("term rejected")
        return super().upsert_term(taxonomy, destination_id, data)


class UncountableAdapter(FakeDirectoryAdapter):
    def count_total_items(self, ctx) -> int:
        raise RuntimeError("source table missing")


def messages(service: MigrationService, adapter_id: str = "fake") -> list[str]:
    entries, _ = service.context(adapter_id).progress.get_logs(0, limit=10_000)
    return [entry.message for entry in entries]


class TestStart:
    def test_counts_total_and_runs_first_stage(self, service, writer) -> None:
        result = service.start("fake", {"listing_status": "draft"})

        stats = service.context("fake").progress.stats()
        assert stats.total == TOTAL_ITEMS
        assert stats.succeeded == 3
        assert result.progress == 2
        assert result.complete is False
        assert len(writer.terms["gd_placecategory"]) == 3

    def test_seeds_task_with_total(self, service) -> None:
        service.start("fake", {})

        task = service.context("fake").store.load_task()
        assert task.stage is Stage.IMPORT_FIELDS
        assert task.extra["total_item_count"] == TOTAL_ITEMS

    def test_settings_are_validated(self, service) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.start("fake", {"listing_status": "archived"})

        assert "listing_status" in exc_info.value.errors
        assert service.context("fake").store.load_task() is None

    def test_unknown_adapter(self, service) -> None:
        with pytest.raises(AdapterError):
            service.start("missing", {})

    def test_count_failure_is_logged_and_raised(self, config, writer, database) -> None:
        registry = AdapterRegistry()
        registry.register(UncountableAdapter())
        service = MigrationService(config, registry, writer=writer, database=database)

        with pytest.raises(AdapterError, match="source table missing"):
            service.start("fake", {})

        assert service.context("fake").store.load_task() is None
        assert "Failed to count items to import: source table missing" in messages(service)
        assert service.lock.is_held(pipeline_lock_key("fake")) is False

    def test_settings_are_persisted_for_later_ticks(self, service, writer) -> None:
        service.start("fake", {"listing_status": "draft"})
        service.run_until_complete("fake")

        statuses = {data["status"] for data in writer.records["gd_place"].values()}
        assert statuses == {"draft"}

    def test_contended_start_is_rejected(self, service, database) -> None:
        holder = SingleFlightLock(database, owner="other-worker")
        holder.acquire(pipeline_lock_key("fake"))

        with pytest.raises(LockBusyError):
            service.start("fake", {})


class TestRunToCompletion:
    def test_processes_every_item(self, service, writer) -> None:
        service.start("fake", {})
        ticks = service.run_until_complete("fake")

        stats = service.context("fake").progress.stats()
        assert ticks == 4
        assert stats.processed == TOTAL_ITEMS
        assert stats.succeeded == TOTAL_ITEMS
        assert stats.failed == 0
        assert writer.count() == TOTAL_ITEMS
        assert service.is_in_progress("fake") is False
        assert service.poll("fake").progress == 100

    def test_progress_and_cursor_are_monotonic(self, service) -> None:
        service.start("fake", {})
        seen: list[tuple[int, int]] = []
        cursor = 0

        def on_tick(result) -> None:
            nonlocal cursor
            poll = service.poll("fake", cursor)
            cursor = poll.logs_shown
            seen.append((poll.progress, cursor))

        service.run_until_complete("fake", on_tick=on_tick)

        progress_values = [progress for progress, _ in seen]
        cursors = [position for _, position in seen]
        assert progress_values == sorted(progress_values)
        assert cursors == sorted(cursors)
        assert progress_values[-1] == 100

    def test_max_ticks_stops_early(self, service) -> None:
        service.start("fake", {})

        assert service.run_until_complete("fake", max_ticks=2) == 2
        assert service.is_in_progress("fake") is True

    def test_stage_messages_are_logged(self, service) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")

        logged = messages(service)
        assert "Categories: Import started." in logged
        assert "Imported category: Cafes" in logged
        assert "Imported listing: Listing 120" in logged
        assert any(
            message.startswith("Categories: Import completed. Processed: 3, Imported: 3")
            for message in logged
        )

    def test_rerun_updates_instead_of_duplicating(self, service, writer) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")
        created = writer.count()
        mappings = service.context("fake").resolver.counts_by_namespace()

        service.start("fake", {})
        service.run_until_complete("fake")

        stats = service.context("fake").progress.stats()
        assert writer.count() == created
        assert service.context("fake").resolver.counts_by_namespace() == mappings
        assert sum(mappings.values()) == 4
        assert stats.succeeded == TOTAL_ITEMS
        assert "Updated category: Cafes" in messages(service)
        assert "Updated listing: Listing 1" in messages(service)

    def test_failed_items_are_counted_and_run_continues(self, config, database) -> None:
        adapter = FakeDirectoryAdapter(
            categories=[{"id": 1, "name": "Cafes"}, {"id": 2, "name": "Broken"}]
        )
        registry = AdapterRegistry()
        registry.register(adapter)
        service = MigrationService(config, registry, writer=BrokenTermWriter(), database=database)

        service.start("fake", {})
        service.run_until_complete("fake")

        stats = service.context("fake").progress.stats()
        assert stats.failed == 1
        assert stats.succeeded == 122
        assert stats.processed == 123
        assert "Failed to import category: Broken (term rejected)" in messages(service)


class TestDryRun:
    def test_writes_nothing(self, service, writer) -> None:
        service.start("fake", {"dry_run": True})
        service.run_until_complete("fake")

        stats = service.context("fake").progress.stats()
        assert writer.writes == 0
        assert stats.processed == TOTAL_ITEMS
        assert messages(service)[0] == "Test mode is enabled. No data will be imported."

    def test_mappings_are_not_recorded(self, service) -> None:
        service.start("fake", {"dry_run": True})
        service.run_until_complete("fake")

        assert service.status("fake").mappings == {}

    def test_config_forces_dry_run(self, registry, writer, database, db_path) -> None:
        config = MigrationConfig(state=StateConfig(db_path=str(db_path)), dry_run=True)
        service = MigrationService(config, registry, writer=writer, database=database)

        service.start("fake", {})
        service.run_until_complete("fake")

        assert writer.writes == 0
        assert service.status("fake").dry_run is True


class TestPoll:
    def test_reports_progress_message(self, service) -> None:
        service.start("fake", {})

        result = service.poll("fake")

        assert result.in_progress is True
        assert result.message == f"Import progress: {result.progress}%"
        assert result.logs_shown == len(result.logs)

    def test_returns_only_unseen_entries(self, service) -> None:
        service.start("fake", {})
        first = service.poll("fake")

        service.tick("fake")
        second = service.poll("fake", first.logs_shown)

        assert second.logs
        assert second.logs_shown > first.logs_shown
        assert all(entry not in first.logs for entry in second.logs)

    def test_completed_run_appends_completion_entry(self, service) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")
        first = service.poll("fake")

        assert first.progress == 100
        assert first.in_progress is False
        assert first.logs[-1]["message"].endswith(f"– {COMPLETED_MESSAGE}")
        assert first.logs[-1]["status"] == "success"

        again = service.poll("fake", first.logs_shown)
        assert len(again.logs) == 1
        assert again.logs_shown == first.logs_shown

    def test_cursor_keeps_working_across_runs(self, service) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")
        cursor = service.poll("fake").logs_shown

        service.start("fake", {})

        entries, _ = service.context("fake").progress.get_logs(0)
        assert entries[0].sequence > cursor
        assert service.poll("fake", cursor).logs

    def test_to_dict(self, service) -> None:
        service.start("fake", {})

        payload = service.poll("fake").to_dict()

        assert set(payload) == {"progress", "message", "logs_shown", "logs", "in_progress"}


class TestAbort:
    def test_abort_stops_the_run(self, service, writer) -> None:
        service.start("fake", {})
        service.tick("fake")
        service.tick("fake")
        written = writer.count()

        assert service.abort("fake") is True

        result = service.tick("fake")
        assert result.in_progress is False
        assert result.job_ran is False
        assert writer.count() == written
        assert service.poll("fake").progress == 100
        assert "Import aborted." in messages(service)

    def test_status_after_abort(self, service) -> None:
        service.start("fake", {})
        service.tick("fake")
        service.tick("fake")
        service.abort("fake")

        snapshot = service.status("fake")
        assert snapshot.aborted is True
        assert snapshot.stage is None
        assert snapshot.pending_jobs == 0

    def test_start_after_abort_runs_again(self, service) -> None:
        service.start("fake", {})
        service.abort("fake")

        service.start("fake", {})
        service.run_until_complete("fake")

        assert service.status("fake").aborted is False
        assert service.context("fake").progress.stats().processed == TOTAL_ITEMS


class TestStatusAndReset:
    def test_status_snapshot(self, service) -> None:
        service.start("fake", {})

        snapshot = service.status("fake")

        assert snapshot.stage == Stage.IMPORT_FIELDS.value
        assert snapshot.in_progress is True
        assert snapshot.stats.total == TOTAL_ITEMS
        assert snapshot.mappings == {"fake:gd_placecategory": 3}

    def test_reset_keeps_mappings_by_default(self, service) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")

        service.reset("fake")

        snapshot = service.status("fake")
        assert snapshot.stats.total == 0
        assert snapshot.mappings == {"fake:gd_placecategory": 3, "fake:custom_field": 1}
        assert messages(service) == []

    def test_reset_can_forget_mappings(self, service) -> None:
        service.start("fake", {})
        service.run_until_complete("fake")

        service.reset("fake", include_mappings=True)

        assert service.status("fake").mappings == {}
