"""
Migration pipeline for listing-bridge.

This package provides the checkpoint store, ID mapping, progress and log
aggregation, the batch queue, the stage sequencer and the polling service.
"""

# Data model
from listing_migration.migration.task import (
    BatchJob,
    CallCounters,
    CounterKind,
    CumulativeCounters,
    ImportSettings,
    ImportStats,
    ImportStatus,
    LogEntry,
    MigrationTask,
    Severity,
    Stage,
    UploadedFile,
)

# State components
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.locking import SingleFlightLock
from listing_migration.migration.mapping import IdMappingResolver, MappingStyle, UpsertOutcome
from listing_migration.migration.progress import ProgressAggregator
from listing_migration.migration.queue import BatchQueue

# Pipeline
from listing_migration.migration.sequencer import StageSequencer, enqueue_page, next_stage
from listing_migration.migration.context import MigrationContext
from listing_migration.migration.service import (
    MigrationService,
    MigrationStatus,
    PollResult,
    StartResult,
    TickResult,
)

__all__ = [
    # Data model
    "BatchJob",
    "CallCounters",
    "CounterKind",
    "CumulativeCounters",
    "ImportSettings",
    "ImportStats",
    "ImportStatus",
    "LogEntry",
    "MigrationTask",
    "Severity",
    "Stage",
    "UploadedFile",
    # State components
    "MigrationDatabase",
    "CheckpointStore",
    "SingleFlightLock",
    "IdMappingResolver",
    "MappingStyle",
    "UpsertOutcome",
    "ProgressAggregator",
    "BatchQueue",
    # Pipeline
    "StageSequencer",
    "enqueue_page",
    "next_stage",
    "MigrationContext",
    "MigrationService",
    "MigrationStatus",
    "PollResult",
    "StartResult",
    "TickResult",
]
