"""Shared test fixtures.

Every test gets its own SQLite state database under ``tmp_path``; the
fake adapter and the in-memory writer live in ``fakes.py``.
"""

from pathlib import Path

import pytest
from fakes import FakeDirectoryAdapter, InMemoryWriter

from listing_migration.adapters.registry import AdapterRegistry
from listing_migration.config import MigrationConfig, StateConfig
from listing_migration.migration.checkpoint import CheckpointStore
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.progress import ProgressAggregator
from listing_migration.migration.service import MigrationService


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state.db"


@pytest.fixture
def database(db_path: Path) -> MigrationDatabase:
    database = MigrationDatabase(f"sqlite:///{db_path}")
    yield database
    database.dispose()


@pytest.fixture
def config(db_path: Path) -> MigrationConfig:
    return MigrationConfig(state=StateConfig(db_path=str(db_path)))


@pytest.fixture
def writer() -> InMemoryWriter:
    return InMemoryWriter()


@pytest.fixture
def adapter() -> FakeDirectoryAdapter:
    return FakeDirectoryAdapter()


@pytest.fixture
def registry(adapter: FakeDirectoryAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(adapter)
    return registry


@pytest.fixture
def service(
    config: MigrationConfig,
    registry: AdapterRegistry,
    writer: InMemoryWriter,
    database: MigrationDatabase,
) -> MigrationService:
    return MigrationService(config, registry, writer=writer, database=database)


@pytest.fixture
def store(database: MigrationDatabase) -> CheckpointStore:
    return CheckpointStore(database, "fake")


@pytest.fixture
def progress(store: CheckpointStore, database: MigrationDatabase) -> ProgressAggregator:
    return ProgressAggregator(store, database, "fake")
