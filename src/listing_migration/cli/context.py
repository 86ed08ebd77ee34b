"""
CLI context manager for listing-bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration, adapters, and the migration service.
"""

from dataclasses import dataclass, field
from pathlib import Path

from listing_migration.adapters.base import DestinationWriter
from listing_migration.adapters.registry import AdapterRegistry, load_destination_writer
from listing_migration.config import MigrationConfig, load_config_from_yaml
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.service import MigrationService
from listing_migration.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class CLIContext:
    """
    Context object for CLI commands.

    This object holds configuration, adapters, and the migration service
    shared across CLI commands. It is passed via Click's context mechanism.

    Attributes:
        config_path: Path to configuration file
        log_level: Logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str | None = None
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, repr=False)
    _registry: AdapterRegistry | None = field(default=None, repr=False)
    _writer: DestinationWriter | None = field(default=None, repr=False)
    _database: MigrationDatabase | None = field(default=None, repr=False)
    _service: MigrationService | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ValueError(
                    "Configuration file path not provided. "
                    "Use --config option or set LISTING_BRIDGE_CONFIG environment variable."
                )

            logger.debug("Loading configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)
            self._apply_logging_config(self._config)
            logger.debug("Configuration loaded successfully")

        return self._config

    def _apply_logging_config(self, config: MigrationConfig) -> None:
        """Reconfigure logging with the file settings; command-line options win."""
        log_file = self.log_file or config.logging.file
        configure_logging(
            level=self.log_level or config.logging.level,
            log_format=config.logging.format,
            log_file=str(log_file) if log_file else None,
            file_level=config.logging.file_level,
        )

    @property
    def registry(self) -> AdapterRegistry:
        """Get or build the adapter registry."""
        if self._registry is None:
            self._registry = AdapterRegistry.from_config(self.config)
        return self._registry

    @property
    def writer(self) -> DestinationWriter | None:
        """Get or create the configured destination writer."""
        if self._writer is None:
            self._writer = load_destination_writer(self.config)
        return self._writer

    @property
    def database(self) -> MigrationDatabase:
        """Get or open the state database."""
        if self._database is None:
            logger.debug("Opening state database", db_path=self.config.state.db_path)
            self._database = MigrationDatabase.from_config(self.config.state)
        return self._database

    @property
    def service(self) -> MigrationService:
        """Get or create the migration service."""
        if self._service is None:
            self._service = MigrationService(
                self.config, self.registry, writer=self.writer, database=self.database
            )
        return self._service

    def cleanup(self) -> None:
        """Clean up resources."""
        if self._database is not None:
            logger.debug("Disposing state database")
            self._database.dispose()

    def __enter__(self) -> "CLIContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()
