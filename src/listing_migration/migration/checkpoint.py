"""
Durable per-adapter key/value state.

This module provides the CheckpointStore class. Everything a migration
needs to resume after a process restart (task, settings, counters, flags)
lives here, namespaced by adapter.
"""

import copy
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select

from listing_migration.exceptions import CheckpointError
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.models import CheckpointEntry
from listing_migration.migration.task import ImportSettings, MigrationTask
from listing_migration.utils.logging import get_logger
from listing_migration.utils.retry import retry_on_locked_database

logger = get_logger(__name__)

_MISSING = object()


class CheckpointStore:
    """
    Key/value store backed by one row per (adapter, key).

    Reads go through a per-instance cache that writes keep coherent. Use
    ``get_uncached`` when the value may have been written by a different
    execution context since this instance last read it.

    Usage:
        store = CheckpointStore(database, "directorist")
        store.set("import_start_time", 1718000000)
        task = store.load_task()
    """

    CURRENT_TASK = "current_task"
    IMPORT_SETTINGS = "import_settings"
    STATS = "stats"
    START_TIME = "import_start_time"
    ABORTED = "aborted"
    STAGE_FAILURES = "stage_failures"

    # Keys describing one run; ID mappings live in their own table and survive
    RUN_KEYS = (CURRENT_TASK, IMPORT_SETTINGS, STATS, START_TIME, ABORTED, STAGE_FAILURES)

    def __init__(self, database: MigrationDatabase, adapter_id: str):
        """
        Initialize checkpoint store.

        Args:
            database: Shared migration database handle
            adapter_id: Adapter whose state this store holds
        """
        self.database = database
        self.adapter_id = adapter_id
        self._cache: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value, serving repeated reads from the cache.

        Args:
            key: Entry key
            default: Value returned when the key is absent

        Returns:
            Stored value or default
        """
        if key in self._cache:
            value = self._cache[key]
            return default if value is _MISSING else copy.deepcopy(value)
        return self.get_uncached(key, default)

    def get_uncached(self, key: str, default: Any = None) -> Any:
        """
        Get a value straight from the database, refreshing the cache.

        Args:
            key: Entry key
            default: Value returned when the key is absent

        Returns:
            Stored value or default

        Raises:
            CheckpointError: If the read fails
        """
        try:
            with self.database.session() as session:
                entry = session.scalar(
                    select(CheckpointEntry).filter_by(adapter_id=self.adapter_id, key=key)
                )
                value = entry.value if entry is not None else _MISSING

        except Exception as e:
            logger.error(
                "Failed to read checkpoint entry",
                adapter_id=self.adapter_id,
                key=key,
                error=str(e),
            )
            raise CheckpointError(f"Failed to read checkpoint entry '{key}': {e}") from e

        self._cache[key] = value
        if value is _MISSING or value is None:
            return default
        return copy.deepcopy(value)

    @retry_on_locked_database()
    def set(self, key: str, value: Any) -> None:
        """
        Store a JSON-serializable value.

        Args:
            key: Entry key
            value: Value to store

        Raises:
            CheckpointError: If the write fails
        """
        try:
            with self.database.session() as session:
                entry = session.scalar(
                    select(CheckpointEntry).filter_by(adapter_id=self.adapter_id, key=key)
                )
                if entry is None:
                    session.add(CheckpointEntry(adapter_id=self.adapter_id, key=key, value=value))
                else:
                    entry.value = value

        except Exception as e:
            logger.error(
                "Failed to write checkpoint entry",
                adapter_id=self.adapter_id,
                key=key,
                error=str(e),
            )
            raise CheckpointError(f"Failed to write checkpoint entry '{key}': {e}") from e

        self._cache[key] = copy.deepcopy(value)
        logger.debug("Checkpoint entry written", adapter_id=self.adapter_id, key=key)

    def delete(self, key: str) -> bool:
        """
        Delete an entry.

        Args:
            key: Entry key

        Returns:
            True if an entry was deleted
        """
        return self.clear([key]) > 0

    def clear(self, keys: Iterable[str] | None = None) -> int:
        """
        Delete several entries (all of this adapter's entries if keys is None).

        Args:
            keys: Keys to delete

        Returns:
            Number of entries deleted

        Raises:
            CheckpointError: If the delete fails
        """
        keys = list(keys) if keys is not None else None

        try:
            with self.database.session() as session:
                query = session.query(CheckpointEntry).filter(
                    CheckpointEntry.adapter_id == self.adapter_id
                )
                if keys is not None:
                    query = query.filter(CheckpointEntry.key.in_(keys))
                count = query.delete(synchronize_session=False)

        except Exception as e:
            logger.error("Failed to clear checkpoint entries", adapter_id=self.adapter_id, error=str(e))
            raise CheckpointError(f"Failed to clear checkpoint entries: {e}") from e

        if keys is None:
            self._cache.clear()
        else:
            for key in keys:
                self._cache[key] = _MISSING

        logger.debug("Cleared checkpoint entries", adapter_id=self.adapter_id, count=count)
        return count

    def load_task(self) -> MigrationTask | None:
        """Load the persisted task, or None when no run is active."""
        data = self.get_uncached(self.CURRENT_TASK)
        if not data:
            return None
        try:
            return MigrationTask.model_validate(data)
        except Exception as e:
            raise CheckpointError(f"Persisted task for '{self.adapter_id}' is invalid: {e}") from e

    def save_task(self, task: MigrationTask | None) -> None:
        """Persist the task; None marks the sequencer as finished."""
        if task is None:
            self.set(self.CURRENT_TASK, None)
        else:
            self.set(self.CURRENT_TASK, task.model_dump(mode="json"))

    def load_settings(self, model: type[ImportSettings] = ImportSettings) -> ImportSettings:
        """Load the import settings saved by ``start``."""
        return model.model_validate(self.get(self.IMPORT_SETTINGS, {}) or {})

    def save_settings(self, settings: ImportSettings) -> None:
        self.set(self.IMPORT_SETTINGS, settings.model_dump(mode="json"))
