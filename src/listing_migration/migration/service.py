"""
Polling control surface of the migration pipeline.

MigrationService is what an HTTP layer, a cron hook or the CLI talks to:
``start`` kicks off a run, ``tick`` performs one bounded step of work,
``poll`` reports progress and new log entries, ``abort`` stops a run.
"""

import time
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from listing_migration.config import MigrationConfig
from listing_migration.exceptions import AdapterError, StateError
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.context import MigrationContext
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.locking import SingleFlightLock, pipeline_lock_key
from listing_migration.migration.mapping import IdMappingResolver
from listing_migration.migration.progress import ProgressAggregator
from listing_migration.migration.queue import BatchQueue
from listing_migration.migration.sequencer import StageSequencer
from listing_migration.migration.task import (
    ImportSettings,
    ImportStats,
    MigrationTask,
    Severity,
    UploadedFile,
    format_elapsed,
)
from listing_migration.utils.logging import adapter_log_context, get_logger, log_error

if TYPE_CHECKING:
    from listing_migration.adapters.base import DestinationWriter
    from listing_migration.adapters.registry import AdapterRegistry

logger = get_logger(__name__)

COMPLETED_MESSAGE = "Import completed."


@dataclass
class StartResult:
    """Response of ``start``."""

    progress: int
    complete: bool


@dataclass
class PollResult:
    """Response of ``poll``."""

    progress: int
    message: str
    logs_shown: int
    logs: list[dict[str, str]] = field(default_factory=list)
    in_progress: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TickResult:
    """Outcome of one ``tick``."""

    task: MigrationTask | None
    job_ran: bool
    in_progress: bool
    error: str | None = None


@dataclass
class MigrationStatus:
    """Snapshot of an adapter's persisted state."""

    adapter_id: str
    stage: str | None
    offset: int
    stats: ImportStats
    pending_jobs: int
    in_progress: bool
    progress: int
    aborted: bool
    dry_run: bool
    mappings: dict[str, int] = field(default_factory=dict)


class MigrationService:
    """
    Starts, drives, observes and aborts migrations.

    Usage:
        service = MigrationService(config, registry, writer)
        service.start("directorist", {"author_id": 1})
        while service.tick("directorist").in_progress:
            result = service.poll("directorist", cursor)
            cursor = result.logs_shown
    """

    def __init__(
        self,
        config: MigrationConfig,
        registry: "AdapterRegistry",
        writer: "DestinationWriter | None" = None,
        database: MigrationDatabase | None = None,
    ):
        """
        Initialize the service.

        Args:
            config: Migration configuration
            registry: Registered source adapters
            writer: Destination writer used by importers
            database: State database (created from config.state if omitted)
        """
        self.config = config
        self.registry = registry
        self.writer = writer
        self.database = database or MigrationDatabase.from_config(config.state)
        self.lock = SingleFlightLock(self.database, lease_seconds=config.state.lock_lease_seconds)

    def context(
        self, adapter_id: str, settings: ImportSettings | None = None
    ) -> MigrationContext:
        """
        Build the migration context of an adapter.

        Args:
            adapter_id: Registered adapter ID
            settings: Settings of the run (loaded from the checkpoint store if omitted)

        Raises:
            AdapterError: If the adapter is not registered
        """
        adapter = self.registry.get(adapter_id)
        store = CheckpointStore(self.database, adapter_id)

        if settings is None:
            settings = store.load_settings(adapter.settings_model)

        progress = ProgressAggregator(
            store,
            self.database,
            adapter_id,
            max_log_entries=self.config.logging.max_log_entries,
            max_log_batch=self.config.logging.max_log_batch,
        )
        queue = BatchQueue(self.database, store, adapter_id, lock=self.lock, progress=progress)
        resolver = IdMappingResolver(
            self.database, adapter_id, writer=self.writer, dry_run=settings.dry_run
        )

        ctx = MigrationContext(
            adapter=adapter,
            settings=settings,
            store=store,
            resolver=resolver,
            progress=progress,
            queue=queue,
            config=self.config,
            writer=self.writer,
        )
        ctx.bind_job_handlers()
        return ctx

    def _sequencer(self, ctx: MigrationContext) -> StageSequencer:
        return StageSequencer(
            ctx, lock=self.lock, max_stage_attempts=self.config.performance.max_stage_attempts
        )

    def is_in_progress(self, adapter_id: str) -> bool:
        """Check whether the sequencer or the queue of an adapter still has work."""
        ctx = self.context(adapter_id, settings=ImportSettings())
        return self._in_progress(ctx)

    @staticmethod
    def _in_progress(ctx: MigrationContext) -> bool:
        return ctx.store.load_task() is not None or ctx.queue.is_pending_or_running()

    def start(
        self,
        adapter_id: str,
        settings: Mapping[str, Any],
        uploaded_files: Iterable[UploadedFile | Mapping[str, Any]] = (),
    ) -> StartResult:
        """
        Start a migration run.

        Clears the previous run's state (ID mappings are kept, so re-running
        updates the records created before), counts the items to process,
        seeds a task at the first stage and advances it once.

        Args:
            adapter_id: Registered adapter ID
            settings: Raw settings submitted by the user
            uploaded_files: Metadata of uploaded files

        Returns:
            StartResult with the initial progress

        Raises:
            AdapterError: If the adapter is not registered or cannot count
                its items
            ValidationError: If the settings are invalid
            LockBusyError: If another worker is advancing this adapter
            StateError: If state cannot be written
        """
        adapter = self.registry.get(adapter_id)
        files = [
            file if isinstance(file, UploadedFile) else UploadedFile.model_validate(file)
            for file in uploaded_files
        ]

        validated = adapter.validate_settings(dict(settings), files)
        if self.config.dry_run and not validated.dry_run:
            validated = validated.model_copy(update={"dry_run": True})

        ctx = self.context(adapter_id, validated)

        with adapter_log_context(adapter_id), self.lock.hold(pipeline_lock_key(adapter_id)):
            ctx.store.clear(CheckpointStore.RUN_KEYS)
            ctx.progress.clear_logs()
            ctx.queue.clear()

            ctx.store.save_settings(validated)
            ctx.progress.start_clock()

            logger.info(
                "Migration started",
                adapter_id=adapter_id,
                dry_run=validated.dry_run,
                files=[file.name for file in files],
            )

            if validated.dry_run:
                ctx.progress.log("Test mode is enabled. No data will be imported.", Severity.ERROR)

            try:
                total = adapter.count_total_items(ctx)
            except StateError:
                raise
            except Exception as e:
                log_error(logger, e, "count_total_items", adapter_id=adapter_id)
                ctx.progress.log(f"Failed to count items to import: {e}", Severity.ERROR)
                raise AdapterError(f"Adapter '{adapter_id}' failed to count its items: {e}") from e

            ctx.progress.set_total_once(total)

            task = MigrationTask(
                adapter_id=adapter_id,
                stage=adapter.stages[0],
                extra={"total_item_count": total},
            )
            ctx.store.save_task(task)

            try:
                self._sequencer(ctx).advance(task)
            except StateError:
                raise
            except Exception as e:
                # Task stays at the first stage; the next tick retries it
                log_error(logger, e, "start", adapter_id=adapter_id)

        in_progress = self._in_progress(ctx)
        progress = ctx.progress.get_progress(in_progress)
        return StartResult(progress=progress, complete=progress >= 100)

    def tick(self, adapter_id: str) -> TickResult:
        """
        Perform one sequencer advance and one queue drain tick.

        Unexpected handler failures are reported in the result rather than
        raised; the failed slice runs again on the next tick.

        Raises:
            StateError: If state cannot be read or written
        """
        ctx = self.context(adapter_id)
        error = None
        task = None

        with adapter_log_context(adapter_id, dry_run=ctx.dry_run):
            try:
                task = self._sequencer(ctx).advance()
            except StateError:
                raise
            except Exception as e:
                error = str(e)
                task = ctx.store.load_task()

            job_ran = ctx.queue.drain_tick()

        return TickResult(
            task=task, job_ran=job_ran, in_progress=self._in_progress(ctx), error=error
        )

    def run_until_complete(
        self, adapter_id: str, max_ticks: int | None = None, on_tick=None
    ) -> int:
        """
        Tick until nothing is in progress.

        Args:
            adapter_id: Registered adapter ID
            max_ticks: Stop after this many ticks (None for no limit)
            on_tick: Optional callback receiving each TickResult

        Returns:
            Number of ticks performed
        """
        ticks = 0
        interval = self.config.performance.tick_interval

        while max_ticks is None or ticks < max_ticks:
            result = self.tick(adapter_id)
            ticks += 1

            if on_tick is not None:
                on_tick(result)

            if not result.in_progress:
                break

            if interval:
                time.sleep(interval)

        logger.info("Run loop finished", adapter_id=adapter_id, ticks=ticks)
        return ticks

    def poll(self, adapter_id: str, logs_already_seen: int = 0) -> PollResult:
        """
        Report progress and the log entries the caller has not seen yet.

        Args:
            adapter_id: Registered adapter ID
            logs_already_seen: Cursor returned by the previous poll

        Returns:
            PollResult; ``logs_shown`` is the cursor for the next poll
        """
        ctx = self.context(adapter_id)
        in_progress = self._in_progress(ctx)
        progress = ctx.progress.get_progress(in_progress)

        entries, cursor = ctx.progress.get_logs(logs_already_seen)
        logs = [entry.to_display() for entry in entries]

        if not in_progress:
            logs.append(
                {
                    "message": f"{format_elapsed(ctx.progress.elapsed_seconds())} – {COMPLETED_MESSAGE}",
                    "status": Severity.SUCCESS.value,
                }
            )

        return PollResult(
            progress=progress,
            message=f"Import progress: {progress}%",
            logs_shown=max(cursor, logs_already_seen),
            logs=logs,
            in_progress=in_progress,
        )

    def abort(self, adapter_id: str) -> bool:
        """
        Abort a run.

        The task is discarded and pending jobs are removed. A job that is
        already running finishes; records it created are not rolled back.

        Returns:
            True once the abort has been recorded
        """
        ctx = self.context(adapter_id)
        ctx.store.save_task(None)
        removed = ctx.queue.abort()
        ctx.progress.log("Import aborted.", Severity.WARNING)
        logger.warning("Migration aborted", adapter_id=adapter_id, pending_jobs_removed=removed)
        return True

    def status(self, adapter_id: str) -> MigrationStatus:
        """Snapshot an adapter's persisted state for display."""
        ctx = self.context(adapter_id)
        task = ctx.store.load_task()
        in_progress = self._in_progress(ctx)

        return MigrationStatus(
            adapter_id=adapter_id,
            stage=task.stage.value if task is not None else None,
            offset=task.offset if task is not None else 0,
            stats=ctx.progress.stats(),
            pending_jobs=ctx.queue.pending_count(),
            in_progress=in_progress,
            progress=ctx.progress.get_progress(in_progress),
            aborted=ctx.is_aborted(),
            dry_run=ctx.dry_run,
            mappings=ctx.resolver.counts_by_namespace(),
        )

    def reset(self, adapter_id: str, include_mappings: bool = False) -> None:
        """
        Forget an adapter's run state.

        Args:
            adapter_id: Registered adapter ID
            include_mappings: Also forget ID mappings, so the next run creates
                new destination records instead of updating existing ones
        """
        ctx = self.context(adapter_id, settings=ImportSettings())
        ctx.store.clear()
        ctx.progress.clear_logs()
        ctx.queue.clear()
        self.lock.force_release(pipeline_lock_key(adapter_id))

        if include_mappings:
            ctx.resolver.clear_namespace()

        logger.warning("Migration state reset", adapter_id=adapter_id, mappings=include_mappings)
