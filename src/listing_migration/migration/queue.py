"""
Durable FIFO of deferred batch jobs.

The sequencer fans large stages out into bounded jobs; each drain tick pops
exactly one job and hands it to the handler registered for its action.
Jobs live in the batch_jobs table, so they survive process restarts.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select

from listing_migration.exceptions import LockBusyError, QueueError, StateError
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.locking import SingleFlightLock, pipeline_lock_key
from listing_migration.migration.models import BatchJobRecord
from listing_migration.migration.progress import ProgressAggregator
from listing_migration.migration.task import BatchJob, ImportStatus, Severity
from listing_migration.utils.logging import get_logger, log_error
from listing_migration.utils.retry import retry_on_locked_database

logger = get_logger(__name__)

# Returns True to reschedule the job at the tail of the queue, False when done
JobCallable = Callable[[BatchJob], bool]


class BatchQueue:
    """
    Per-adapter job queue with cooperative abort.

    Usage:
        queue = BatchQueue(database, store, "directorist", lock=lock, progress=progress)
        queue.register("import_listings", handler)
        queue.enqueue(BatchQueue.chunk("import_listings", rows, 50))
        while queue.drain_tick():
            pass
    """

    def __init__(
        self,
        database: MigrationDatabase,
        store: CheckpointStore,
        adapter_id: str,
        lock: SingleFlightLock | None = None,
        progress: ProgressAggregator | None = None,
    ):
        """
        Initialize the queue.

        Args:
            database: Shared migration database handle
            store: Checkpoint store holding the abort flag
            adapter_id: Adapter whose jobs this queue holds
            lock: Single-flight lock taken around each drain tick
            progress: Aggregator charged with failed items of crashed jobs
        """
        self.database = database
        self.store = store
        self.adapter_id = adapter_id
        self.lock = lock
        self.progress = progress
        self._handlers: dict[str, JobCallable] = {}

    def register(self, action: str, handler: JobCallable) -> None:
        """Register the handler dispatched for jobs with the given action."""
        self._handlers[action] = handler

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    @staticmethod
    def chunk(action: str, items: Sequence[Any], batch_size: int) -> list[BatchJob]:
        """
        Split items into bounded jobs, preserving order.

        Args:
            action: Job handler name
            items: Items to split
            batch_size: Maximum items per job

        Returns:
            ceil(len(items) / batch_size) jobs
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1 (got {batch_size})")
        return [
            BatchJob(action=action, payload=list(items[start : start + batch_size]))
            for start in range(0, len(items), batch_size)
        ]

    @retry_on_locked_database()
    def enqueue(self, jobs: Iterable[BatchJob]) -> int:
        """
        Append jobs to the tail of the queue.

        Args:
            jobs: Jobs to submit, in order

        Returns:
            Number of jobs submitted

        Raises:
            QueueError: If the jobs cannot be persisted
        """
        jobs = list(jobs)
        if not jobs:
            return 0

        try:
            with self.database.session() as session:
                session.add_all(
                    BatchJobRecord(
                        adapter_id=self.adapter_id,
                        action=job.action,
                        payload=job.payload,
                        enqueued_at=job.enqueued_at,
                    )
                    for job in jobs
                )

        except Exception as e:
            logger.error("Failed to enqueue batch jobs", adapter_id=self.adapter_id, error=str(e))
            raise QueueError(f"Failed to enqueue batch jobs: {e}") from e

        logger.debug(
            "Batch jobs enqueued",
            adapter_id=self.adapter_id,
            count=len(jobs),
            actions=sorted({job.action for job in jobs}),
        )
        return len(jobs)

    def is_aborted(self) -> bool:
        return bool(self.store.get_uncached(CheckpointStore.ABORTED, False))

    def drain_tick(self) -> bool:
        """
        Pop and dispatch the oldest pending job.

        Returns:
            True if a job was dispatched, False if the queue is empty,
            aborted, or another worker holds the adapter lock

        Raises:
            StateError: If queue state cannot be read or written
        """
        if self.is_aborted():
            self._purge_aborted()
            return False

        if self.lock is None:
            return self._drain_one()

        try:
            with self.lock.hold(pipeline_lock_key(self.adapter_id)):
                return self._drain_one()
        except LockBusyError:
            logger.debug("Drain tick skipped, adapter is busy", adapter_id=self.adapter_id)
            return False

    def _purge_aborted(self) -> None:
        """Drop pending jobs, and running ones too once no worker holds the lock."""
        self._delete_pending()

        if self.lock is None:
            self._delete_abandoned()
            return

        try:
            with self.lock.hold(pipeline_lock_key(self.adapter_id)):
                self._delete_abandoned()
        except LockBusyError:
            logger.debug("Running job left to its worker", adapter_id=self.adapter_id)

    def _processed(self) -> int:
        return self.progress.stats().processed if self.progress is not None else 0

    def _drain_one(self) -> bool:
        job = self._pop()
        if job is None:
            return False

        processed_before = self._processed()

        handler = self._handlers.get(job.action)
        if handler is None:
            logger.error("No handler for batch job", adapter_id=self.adapter_id, action=job.action)
            self._fail(job, f"Unknown batch action '{job.action}'")
            return True

        try:
            reschedule = handler(job)

        except StateError:
            self._release(job.id)
            raise

        except Exception as e:
            log_error(logger, e, "batch_job", adapter_id=self.adapter_id, action=job.action)
            recorded = self._processed() - processed_before
            self._fail(job, f"Batch job '{job.action}' failed: {e}", recorded=recorded)
            return True

        if reschedule and not self.is_aborted():
            self._requeue(job)
        else:
            self._delete(job.id)

        return True

    def _pop(self) -> BatchJob | None:
        try:
            with self.database.session() as session:
                # Only a crashed worker can leave a job running while we hold the lock
                session.query(BatchJobRecord).filter(
                    BatchJobRecord.adapter_id == self.adapter_id,
                    BatchJobRecord.status == "running",
                ).update({"status": "pending", "started_at": None}, synchronize_session=False)

                record = session.scalar(
                    select(BatchJobRecord)
                    .where(
                        BatchJobRecord.adapter_id == self.adapter_id,
                        BatchJobRecord.status == "pending",
                    )
                    .order_by(BatchJobRecord.id)
                    .limit(1)
                )
                if record is None:
                    return None

                record.status = "running"
                record.attempts += 1
                record.started_at = datetime.now(UTC)

                return BatchJob(
                    id=record.id,
                    action=record.action,
                    payload=list(record.payload),
                    enqueued_at=record.enqueued_at,
                    attempts=record.attempts,
                )

        except Exception as e:
            logger.error("Failed to pop batch job", adapter_id=self.adapter_id, error=str(e))
            raise QueueError(f"Failed to pop batch job: {e}") from e

    def _requeue(self, job: BatchJob) -> None:
        """Move a job to the tail of the queue with its current payload."""
        with self.database.session() as session:
            session.query(BatchJobRecord).filter(BatchJobRecord.id == job.id).delete(
                synchronize_session=False
            )
            session.add(
                BatchJobRecord(
                    adapter_id=self.adapter_id,
                    action=job.action,
                    payload=job.payload,
                    attempts=job.attempts,
                )
            )
        logger.debug("Batch job rescheduled", adapter_id=self.adapter_id, action=job.action)

    def _release(self, job_id: int | None) -> None:
        with self.database.session() as session:
            session.query(BatchJobRecord).filter(BatchJobRecord.id == job_id).update(
                {"status": "pending", "started_at": None}, synchronize_session=False
            )

    def _delete(self, job_id: int | None) -> None:
        with self.database.session() as session:
            session.query(BatchJobRecord).filter(BatchJobRecord.id == job_id).delete(
                synchronize_session=False
            )

    def _fail(self, job: BatchJob, message: str, recorded: int = 0) -> None:
        """Drop a job that cannot complete, counting its unrecorded items as failed.

        ``recorded`` items already reached the counters before the crash.
        """
        self._delete(job.id)
        if self.progress is not None:
            self.progress.record(ImportStatus.FAILED, max(0, len(job) - recorded))
            self.progress.log(message, Severity.ERROR)

    def _delete_pending(self) -> int:
        with self.database.session() as session:
            count = (
                session.query(BatchJobRecord)
                .filter(
                    BatchJobRecord.adapter_id == self.adapter_id,
                    BatchJobRecord.status == "pending",
                )
                .delete(synchronize_session=False)
            )
        if count:
            logger.info("Pending batch jobs removed", adapter_id=self.adapter_id, count=count)
        return count

    def _delete_abandoned(self) -> int:
        with self.database.session() as session:
            count = (
                session.query(BatchJobRecord)
                .filter(
                    BatchJobRecord.adapter_id == self.adapter_id,
                    BatchJobRecord.status == "running",
                )
                .delete(synchronize_session=False)
            )
        if count:
            logger.warning("Abandoned batch jobs removed", adapter_id=self.adapter_id, count=count)
        return count

    def pending_count(self) -> int:
        """Number of jobs waiting to run."""
        with self.database.session() as session:
            return (
                session.scalar(
                    select(func.count(BatchJobRecord.id)).where(
                        BatchJobRecord.adapter_id == self.adapter_id,
                        BatchJobRecord.status == "pending",
                    )
                )
                or 0
            )

    def is_pending_or_running(self) -> bool:
        """Check whether any job of this adapter is queued or running."""
        with self.database.session() as session:
            job_id = session.scalar(
                select(BatchJobRecord.id).where(BatchJobRecord.adapter_id == self.adapter_id).limit(1)
            )
            return job_id is not None

    def abort(self) -> int:
        """
        Raise the abort flag and remove pending jobs.

        A job that is already running finishes and keeps its counters. A job
        left running by a crashed worker is removed by the next drain tick.

        Returns:
            Number of pending jobs removed
        """
        self.store.set(CheckpointStore.ABORTED, True)
        count = self._delete_pending()
        logger.warning("Batch queue aborted", adapter_id=self.adapter_id, removed=count)
        return count

    def clear(self) -> int:
        """Remove every job of this adapter, running ones included."""
        with self.database.session() as session:
            return (
                session.query(BatchJobRecord)
                .filter(BatchJobRecord.adapter_id == self.adapter_id)
                .delete(synchronize_session=False)
            )
