"""
Per-migration context handed to adapter handlers.

Handlers receive everything they need through this object instead of
reaching for process-wide state: the settings of the run, the state
components, the destination writer, and helpers implementing the common
per-item bookkeeping.
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from listing_migration.config import MigrationConfig
from listing_migration.exceptions import ItemError, StateError
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.mapping import IdMappingResolver, UpsertOutcome
from listing_migration.migration.progress import ProgressAggregator
from listing_migration.migration.queue import BatchQueue
from listing_migration.migration.sequencer import next_stage
from listing_migration.migration.task import (
    CallCounters,
    ImportSettings,
    ImportStatus,
    MigrationTask,
)
from listing_migration.utils.logging import get_logger, log_error

if TYPE_CHECKING:
    from listing_migration.adapters.base import DestinationWriter, SourceAdapter

logger = get_logger(__name__)

ItemImporter = Callable[[Any], "ImportStatus | UpsertOutcome"]


@dataclass
class MigrationContext:
    """
    Everything a stage or job handler may touch during one migration.

    Attributes:
        adapter: Source adapter being migrated
        settings: Validated settings of the run
        store: Checkpoint store of the adapter
        resolver: ID mapping resolver (honours dry-run)
        progress: Counters and log stream
        queue: Batch queue of the adapter
        config: Migration configuration
        writer: Destination writer (None in read-only tooling)
        task: Task of the call in progress, if any
    """

    adapter: "SourceAdapter"
    settings: ImportSettings
    store: CheckpointStore
    resolver: IdMappingResolver
    progress: ProgressAggregator
    queue: BatchQueue
    config: MigrationConfig
    writer: "DestinationWriter | None" = None
    task: MigrationTask | None = None

    @property
    def adapter_id(self) -> str:
        return self.adapter.adapter_id

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    @property
    def batch_size(self) -> int:
        return self.config.performance.job_batch_size

    @property
    def page_size(self) -> int:
        return self.config.performance.parse_page_size

    def next_stage(self, task: MigrationTask, reset_offset: bool = True) -> MigrationTask | None:
        """Move a task to the adapter's next stage (None when finished)."""
        return next_stage(self.adapter.stages, task, reset_offset)

    def is_aborted(self) -> bool:
        return bool(self.store.get_uncached(CheckpointStore.ABORTED, False))

    def bind_job_handlers(self) -> None:
        """Register the adapter's job handlers on the queue, bound to this context."""
        for action, handler in self.adapter.job_handlers().items():
            self.queue.register(action, partial(handler, self))

    def record_item(
        self,
        status: ImportStatus,
        kind: str,
        name: str,
        task: MigrationTask | None = None,
        detail: str | None = None,
    ) -> None:
        """
        Count one item outcome and log it with the standard template.

        Args:
            status: Item outcome
            kind: Entity kind shown to the user (e.g. "category")
            name: Item name or title
            task: Task whose counters should also be updated (stage handlers)
            detail: Optional reason appended to the log message
        """
        self.progress.record(status)
        self.progress.log_item(status, kind, name, detail)
        if task is not None:
            task.record(status)

    def import_items(
        self,
        items: Iterable[Any],
        import_one: ItemImporter,
        kind: str,
        name_of: Callable[[Any], str] = str,
        task: MigrationTask | None = None,
    ) -> CallCounters:
        """
        Import items one by one, isolating per-item failures.

        An ItemError or unexpected exception marks the item failed and
        processing continues. StateError propagates.

        Args:
            items: Source rows
            import_one: Imports one row and returns its status or upsert outcome
            kind: Entity kind shown to the user
            name_of: Extracts the display name of a row
            task: Task whose counters should also be updated

        Returns:
            Counters of this batch of items
        """
        counters = CallCounters()

        for item in items:
            name = name_of(item)
            detail = None

            try:
                result = import_one(item)
                status = result.status if isinstance(result, UpsertOutcome) else result

            except StateError:
                raise

            except ItemError as e:
                status = ImportStatus.FAILED
                detail = str(e)

            except Exception as e:
                log_error(logger, e, "import_item", adapter_id=self.adapter_id, kind=kind, item=name)
                status = ImportStatus.FAILED
                detail = str(e)

            counters.record(status)
            self.record_item(status, kind, name, task=task, detail=detail)

        return counters

    def enqueue_batches(
        self, action: str, items: Sequence[Any], batch_size: int | None = None
    ) -> int:
        """
        Fan items out into bounded batch jobs.

        Returns:
            Number of jobs enqueued
        """
        jobs = BatchQueue.chunk(action, items, batch_size or self.batch_size)
        return self.queue.enqueue(jobs)
