"""
State database connection management.

Every state component (checkpoint store, ID mappings, log stream, batch
queue, adapter locks) shares one MigrationDatabase handle. The handle is
passed explicitly so a process can hold several state databases (tests do)
without globals.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event, pool, text
from sqlalchemy.orm import Session, sessionmaker

from listing_migration.config import StateConfig
from listing_migration.exceptions import ConfigurationError, ListingMigrationError, StateError
from listing_migration.migration.models import Base
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Seconds SQLite waits on a locked database before raising "database is locked"
SQLITE_BUSY_TIMEOUT = 15


def _configure_sqlite_connection(dbapi_conn, connection_record):
    """Enable foreign keys and WAL journaling on each new SQLite connection.

    WAL lets a poller read progress while a cron tick is writing.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _engine_options(database_url: str, config: StateConfig | None) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # One connection per session; SQLite connections must not cross threads
        return {
            "poolclass": pool.NullPool,
            "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        }

    config = config or StateConfig()
    return {
        "pool_size": config.db_pool_size,
        "max_overflow": config.db_max_overflow,
        "pool_timeout": config.db_pool_timeout,
        "pool_recycle": config.db_pool_recycle,
        "pool_pre_ping": True,
    }


def create_state_engine(
    database_url: str, config: StateConfig | None = None, echo: bool = False
) -> Engine:
    """
    Create the SQLAlchemy engine of a state database.

    Args:
        database_url: sqlite:/// file URL or a server URL (postgresql://, mysql://)
        config: State configuration supplying pool settings for server databases
        echo: Log SQL statements

    Raises:
        ConfigurationError: If the URL is empty or the engine cannot be created
    """
    if not database_url:
        raise ConfigurationError("State database URL cannot be empty")

    try:
        engine = create_engine(database_url, echo=echo, **_engine_options(database_url, config))
    except Exception as e:
        logger.error("Failed to create state engine", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create state database engine: {e}") from e

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _configure_sqlite_connection)

    logger.debug("State engine created", dialect=engine.dialect.name)
    return engine


class MigrationDatabase:
    """
    Handle on the relational datastore holding all migration state.

    Creating the handle creates missing tables, which is safe to repeat.

    Usage:
        database = MigrationDatabase("sqlite:///state.db")
        with database.session() as session:
            session.add(obj)  # committed on exit
    """

    def __init__(self, database_url: str, config: StateConfig | None = None, echo: bool = False):
        """
        Open the state database.

        Args:
            database_url: Database connection URL
            config: State configuration (pool settings)
            echo: Log SQL statements

        Raises:
            ConfigurationError: If the database cannot be opened or initialized
        """
        self.database_url = database_url
        self.engine = create_state_engine(database_url, config, echo=echo)

        try:
            Base.metadata.create_all(self.engine)
        except Exception as e:
            logger.error("Failed to initialize state tables", error=str(e), database_url=database_url)
            raise ConfigurationError(f"Failed to initialize state database: {e}") from e

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info("State database ready", database_url=database_url)

    @classmethod
    def from_config(cls, config: StateConfig) -> "MigrationDatabase":
        """Open the state database named by ``config.db_path``."""
        return cls(config.database_url, config)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Commits on success and rolls back on exception. Domain errors raised
        inside the block propagate unchanged; anything else is wrapped in
        StateError.

        Raises:
            StateError: If the database operation fails
        """
        session = self._session_factory()

        try:
            yield session
            session.commit()

        except ListingMigrationError:
            session.rollback()
            raise

        except Exception as e:
            session.rollback()
            logger.error("State session rolled back", error=str(e))
            raise StateError(f"Database operation failed: {e}") from e

        finally:
            session.close()

    def check_connection(self) -> bool:
        """Run a trivial query to confirm the database is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("State database unreachable", error=str(e), database_url=self.database_url)
            return False
        return True

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
