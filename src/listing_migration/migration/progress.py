"""
Cumulative counters and the bounded import log stream.

The ProgressAggregator is the only writer of the run-wide stats and of the
import log. Both the sequencer and batch job handlers report through it,
and the polling surface reads from it.
"""

import time
from collections.abc import Callable

from sqlalchemy import select

from listing_migration.exceptions import StateError
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.models import LogRecord
from listing_migration.migration.task import (
    CallCounters,
    CounterKind,
    ImportStats,
    ImportStatus,
    LogEntry,
    Severity,
    Stage,
)
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_COUNTER = {
    ImportStatus.CREATED: CounterKind.SUCCEEDED,
    ImportStatus.UPDATED: CounterKind.SUCCEEDED,
    ImportStatus.SKIPPED: CounterKind.SKIPPED,
    ImportStatus.FAILED: CounterKind.FAILED,
}

_STATUS_TEMPLATE = {
    ImportStatus.CREATED: ("Imported {kind}: {name}", Severity.SUCCESS),
    ImportStatus.UPDATED: ("Updated {kind}: {name}", Severity.WARNING),
    ImportStatus.SKIPPED: ("Skipped {kind}: {name}", Severity.WARNING),
    ImportStatus.FAILED: ("Failed to import {kind}: {name}", Severity.ERROR),
}


class ProgressAggregator:
    """
    Records item outcomes and log entries for one adapter.

    Usage:
        progress = ProgressAggregator(store, database, "directorist")
        progress.set_total_once(124)
        progress.record(ImportStatus.CREATED)
        progress.log("Imported category: Cafes", Severity.SUCCESS)
        entries, cursor = progress.get_logs(after_cursor=0)
    """

    def __init__(
        self,
        store: CheckpointStore,
        database: MigrationDatabase,
        adapter_id: str,
        max_log_entries: int = 5000,
        max_log_batch: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the aggregator.

        Args:
            store: Checkpoint store holding the stats and start time
            database: Shared migration database handle (import log table)
            adapter_id: Adapter being migrated
            max_log_entries: Entries kept before the oldest are pruned
            max_log_batch: Maximum entries returned by one get_logs call
            clock: Source of the current Unix time
        """
        self.store = store
        self.database = database
        self.adapter_id = adapter_id
        self.max_log_entries = max_log_entries
        self.max_log_batch = max_log_batch
        self._clock = clock

    # Counters

    def stats(self) -> ImportStats:
        """Read the current run-wide stats."""
        return ImportStats.model_validate(self.store.get_uncached(CheckpointStore.STATS, {}) or {})

    def _save_stats(self, stats: ImportStats) -> None:
        self.store.set(CheckpointStore.STATS, stats.model_dump(mode="json"))

    def increase(self, kind: CounterKind, n: int = 1) -> None:
        """
        Add to one cumulative counter.

        Args:
            kind: Counter to increase
            n: Amount (must not be negative)
        """
        if n < 0:
            raise ValueError(f"Counter '{kind.value}' cannot be decreased (got {n})")
        if n == 0:
            return

        stats = self.stats()
        setattr(stats, kind.value, getattr(stats, kind.value) + n)
        self._save_stats(stats)

    def set_total_once(self, total: int) -> bool:
        """
        Set the expected item total unless it was already counted this run.

        Returns:
            True if the total was set
        """
        stats = self.stats()
        if stats.total_counted:
            return False

        stats.total = max(0, total)
        stats.total_counted = True
        self._save_stats(stats)
        logger.info("Import total counted", adapter_id=self.adapter_id, total=stats.total)
        return True

    def record(self, status: ImportStatus, count: int = 1) -> None:
        """Count ``count`` items with the given outcome."""
        self.increase(_STATUS_COUNTER[status], count)

    def get_progress(self, in_progress: bool) -> int:
        """
        Compute the completion percentage.

        Args:
            in_progress: Whether the sequencer or queue still has work

        Returns:
            Integer percentage in [0, 100]; 100 once nothing is in progress
        """
        if not in_progress:
            return 100

        stats = self.stats()
        if stats.total <= 0:
            return 0
        # Half rounds up: 1 of 40 shows 3, not 2
        percent = (stats.processed * 200 + stats.total) // (stats.total * 2)
        return min(percent, 100)

    # Clock

    def start_clock(self, now: float | None = None) -> None:
        """Record the import start time used as the log timestamp origin."""
        self.store.set(CheckpointStore.START_TIME, now if now is not None else self._clock())

    def elapsed_seconds(self) -> int:
        """Seconds since the import started (0 if it never started)."""
        started = self.store.get(CheckpointStore.START_TIME)
        if not started:
            return 0
        return max(0, int(self._clock() - float(started)))

    # Log stream

    def log(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        """
        Append an entry to the import log.

        Args:
            message: Log message
            severity: Entry severity

        Returns:
            The stored LogEntry with its sequence number

        Raises:
            StateError: If the entry cannot be stored
        """
        elapsed = self.elapsed_seconds()

        try:
            with self.database.session() as session:
                record = LogRecord(
                    adapter_id=self.adapter_id,
                    message=message,
                    severity=severity.value,
                    elapsed_seconds=elapsed,
                )
                session.add(record)
                session.flush()
                entry = self._to_entry(record)
                self._prune(session, record.id)

        except Exception as e:
            logger.error("Failed to write import log entry", adapter_id=self.adapter_id, error=str(e))
            raise StateError(f"Failed to write import log entry: {e}") from e

        if severity is Severity.ERROR:
            logger.error(message, adapter_id=self.adapter_id, sequence=entry.sequence)
        elif severity is Severity.WARNING:
            logger.warning(message, adapter_id=self.adapter_id, sequence=entry.sequence)
        else:
            logger.info(message, adapter_id=self.adapter_id, sequence=entry.sequence)

        return entry

    def _prune(self, session, newest_id: int) -> None:
        """Delete the oldest entries beyond max_log_entries."""
        threshold = session.scalar(
            select(LogRecord.id)
            .where(LogRecord.adapter_id == self.adapter_id, LogRecord.id <= newest_id)
            .order_by(LogRecord.id.desc())
            .offset(self.max_log_entries)
            .limit(1)
        )
        if threshold is not None:
            session.query(LogRecord).filter(
                LogRecord.adapter_id == self.adapter_id, LogRecord.id <= threshold
            ).delete(synchronize_session=False)

    @staticmethod
    def _to_entry(record: LogRecord) -> LogEntry:
        return LogEntry(
            sequence=record.id,
            message=record.message,
            severity=Severity(record.severity),
            timestamp=record.created_at,
            elapsed_seconds=record.elapsed_seconds,
        )

    def get_logs(self, after_cursor: int = 0, limit: int | None = None) -> tuple[list[LogEntry], int]:
        """
        Fetch entries appended after a cursor.

        Args:
            after_cursor: Sequence number of the last entry the caller has seen
            limit: Maximum number of entries (defaults to max_log_batch)

        Returns:
            Tuple of (entries in sequence order, new cursor). The cursor is
            unchanged when there are no new entries.
        """
        limit = min(limit or self.max_log_batch, self.max_log_batch)

        try:
            with self.database.session() as session:
                records = session.scalars(
                    select(LogRecord)
                    .where(LogRecord.adapter_id == self.adapter_id, LogRecord.id > after_cursor)
                    .order_by(LogRecord.id)
                    .limit(limit)
                ).all()
                entries = [self._to_entry(record) for record in records]

        except Exception as e:
            logger.error("Failed to read import log", adapter_id=self.adapter_id, error=str(e))
            raise StateError(f"Failed to read import log: {e}") from e

        cursor = entries[-1].sequence if entries else after_cursor
        return entries, cursor

    def clear_logs(self) -> int:
        """Delete all of this adapter's log entries."""
        with self.database.session() as session:
            return (
                session.query(LogRecord)
                .filter(LogRecord.adapter_id == self.adapter_id)
                .delete(synchronize_session=False)
            )

    def clear(self) -> None:
        """Reset stats, start time and the log stream for a new run."""
        self.store.clear([CheckpointStore.STATS, CheckpointStore.START_TIME])
        removed = self.clear_logs()
        logger.debug("Progress cleared", adapter_id=self.adapter_id, log_entries_removed=removed)

    # Message templates

    def log_item(self, status: ImportStatus, kind: str, name: str, detail: str | None = None) -> LogEntry:
        """
        Log the outcome of one item with the standard template.

        Args:
            status: Item outcome
            kind: Entity kind shown to the user (e.g. "category")
            name: Item name or title
            detail: Optional reason appended to the message
        """
        template, severity = _STATUS_TEMPLATE[status]
        message = template.format(kind=kind, name=name)
        if detail:
            message = f"{message} ({detail})"
        return self.log(message, severity)

    def log_stage_started(self, stage: Stage) -> LogEntry:
        return self.log(f"{stage.label}: Import started.", Severity.INFO)

    def log_stage_finished(self, stage: Stage, counters: CallCounters) -> LogEntry:
        """Log the per-stage summary."""
        return self.log(
            f"{stage.label}: Import completed. Processed: {counters.processed}, "
            f"Imported: {counters.imported}, Updated: {counters.updated}, "
            f"Skipped: {counters.skipped}, Failed: {counters.failed}",
            Severity.SUCCESS,
        )
