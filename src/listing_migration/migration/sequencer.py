"""
Stage sequencer: advances a migration task through the adapter's stages.

Each call performs one bounded slice of work. The handler of the current
stage either processes a slice directly and moves its offset, or enumerates
a page of source rows and fans it out to the batch queue. The resulting
task is persisted only after the handler returns, so a failed call leaves
the stored task untouched and the same slice runs again on the next call.
"""

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from listing_migration.exceptions import (
    AdapterError,
    CheckpointError,
    LockBusyError,
    StageError,
    StateError,
)
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.locking import SingleFlightLock, pipeline_lock_key
from listing_migration.migration.task import CallCounters, MigrationTask, Severity, Stage
from listing_migration.utils.logging import get_logger, log_error, log_migration_progress

if TYPE_CHECKING:
    from listing_migration.migration.context import MigrationContext

logger = get_logger(__name__)


def next_stage(
    stages: Sequence[Stage], task: MigrationTask, reset_offset: bool = True
) -> MigrationTask | None:
    """
    Move a task to the successor of its current stage.

    Args:
        stages: The adapter's declared stage order
        task: Current task
        reset_offset: Start the next stage at offset 0

    Returns:
        A new task at the next stage with zeroed per-call counters, or
        None if the current stage is the last one

    Raises:
        CheckpointError: If the task's stage is not declared
    """
    try:
        index = list(stages).index(task.stage)
    except ValueError:
        raise CheckpointError(
            f"Task stage '{task.stage.value}' is not declared by adapter '{task.adapter_id}'"
        ) from None

    if index + 1 >= len(stages):
        return None

    return task.model_copy(
        update={
            "stage": stages[index + 1],
            "offset": 0 if reset_offset else task.offset,
            "call_counters": CallCounters(),
        },
        deep=True,
    )


def enqueue_page(
    ctx: "MigrationContext",
    task: MigrationTask,
    fetch_page: Callable[[int, int], Sequence[Any]],
    action: str,
    page_size: int | None = None,
    batch_size: int | None = None,
) -> MigrationTask | None:
    """
    Fan one page of source rows out into batch jobs.

    Typical body of a parse_* stage handler: it runs once per page until
    the source is exhausted, then moves to the next stage.

    Args:
        ctx: Migration context
        task: Current task (its offset is the page start)
        fetch_page: Returns up to ``limit`` rows starting at ``offset``
        action: Job handler name for the batches
        page_size: Rows per page (defaults to the configured parse page size)
        batch_size: Rows per job (defaults to the configured job batch size)

    Returns:
        The task at the next page, or the task at the next stage
    """
    page_size = page_size or ctx.page_size

    if task.offset == 0:
        ctx.progress.log_stage_started(task.stage)

    rows = list(fetch_page(task.offset, page_size))
    if not rows:
        return ctx.next_stage(task, reset_offset=True)

    jobs = ctx.enqueue_batches(action, rows, batch_size)
    logger.debug(
        "Page enqueued",
        adapter_id=task.adapter_id,
        stage=task.stage.value,
        offset=task.offset,
        rows=len(rows),
        jobs=jobs,
    )

    if len(rows) < page_size:
        return ctx.next_stage(task, reset_offset=True)

    task.offset += len(rows)
    return task


class StageSequencer:
    """
    Runs one stage slice per call.

    Usage:
        sequencer = StageSequencer(ctx, lock=lock, max_stage_attempts=3)
        task = sequencer.advance()
        # None: every stage has run (batch jobs may still be draining)
    """

    def __init__(
        self,
        ctx: "MigrationContext",
        lock: SingleFlightLock | None = None,
        max_stage_attempts: int = 3,
    ):
        """
        Initialize the sequencer.

        Args:
            ctx: Migration context of the adapter
            lock: Single-flight lock taken around each advance
            max_stage_attempts: Unexpected failures of one stage before it is skipped
        """
        self.ctx = ctx
        self.lock = lock
        self.max_stage_attempts = max_stage_attempts
        self._handlers = dict(ctx.adapter.stage_handlers())

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(self.ctx.adapter.stages)

    def advance(self, task: MigrationTask | None = None) -> MigrationTask | None:
        """
        Run the current stage once and persist the resulting task.

        Args:
            task: Task to advance (loaded from the checkpoint store if omitted)

        Returns:
            The persisted task, or None once the run is finished or aborted.
            If another worker holds the adapter lock, nothing runs and the
            stored task is returned unchanged.

        Raises:
            StateError: If state cannot be read or written
            Exception: Unexpected handler failures below the attempt limit
        """
        if self.lock is None:
            return self._advance(task)

        try:
            with self.lock.hold(pipeline_lock_key(self.ctx.adapter_id)):
                return self._advance(task)
        except LockBusyError:
            logger.debug("Advance skipped, adapter is busy", adapter_id=self.ctx.adapter_id)
            return task if task is not None else self.ctx.store.load_task()

    def _advance(self, task: MigrationTask | None) -> MigrationTask | None:
        store = self.ctx.store

        if task is None:
            task = store.load_task()
            if task is None:
                return None

        if self.ctx.is_aborted():
            store.save_task(None)
            logger.info("Run aborted, sequencer stopped", adapter_id=task.adapter_id)
            return None

        if task.stage not in self.stages:
            raise CheckpointError(
                f"Task stage '{task.stage.value}' is not declared by adapter '{task.adapter_id}'"
            )

        stage = task.stage
        task = task.model_copy(update={"call_counters": CallCounters()}, deep=True)
        handler = self._handlers[stage]
        self.ctx.task = task

        try:
            result = handler(self.ctx, task)
            if result is not None and result.stage not in self.stages:
                raise AdapterError(
                    f"Stage handler for '{stage.value}' returned undeclared stage "
                    f"'{result.stage.value}'"
                )

        except StateError:
            raise

        except StageError as e:
            result = self._skip_stage(task, e)

        except Exception as e:
            failures = self._count_failure(stage)
            log_error(
                logger,
                e,
                "stage_handler",
                adapter_id=task.adapter_id,
                stage=stage.value,
                attempt=failures,
            )

            if failures < self.max_stage_attempts:
                self.ctx.progress.log(
                    f"{stage.label}: Import error, retrying ({failures}/"
                    f"{self.max_stage_attempts}): {e}",
                    Severity.WARNING,
                )
                raise

            result = self._skip_stage(task, StageError(str(e)))

        finally:
            self.ctx.task = None

        self._clear_failures(stage)
        store.save_task(result)

        stats = self.ctx.progress.stats()
        log_migration_progress(
            logger,
            task.adapter_id,
            result.stage.value if result is not None else None,
            stats.processed,
            stats.total,
            offset=result.offset if result is not None else None,
        )
        return result

    def _skip_stage(self, task: MigrationTask, error: StageError) -> MigrationTask | None:
        self.ctx.progress.log(f"{task.stage.label}: Import failed: {error}", Severity.ERROR)
        logger.error(
            "Stage skipped after failure",
            adapter_id=task.adapter_id,
            stage=task.stage.value,
            error=str(error),
        )
        return next_stage(self.stages, task, reset_offset=True)

    def _count_failure(self, stage: Stage) -> int:
        failures = self.ctx.store.get(CheckpointStore.STAGE_FAILURES, {}) or {}
        failures[stage.value] = failures.get(stage.value, 0) + 1
        self.ctx.store.set(CheckpointStore.STAGE_FAILURES, failures)
        return failures[stage.value]

    def _clear_failures(self, stage: Stage) -> None:
        failures = self.ctx.store.get(CheckpointStore.STAGE_FAILURES, {}) or {}
        if failures.pop(stage.value, None) is not None:
            self.ctx.store.set(CheckpointStore.STAGE_FAILURES, failures)
