"""Configuration management for listing-bridge using Pydantic.

This module provides type-safe configuration models for state storage,
batch sizing, logging, and adapter registration.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StateConfig(BaseModel):
    """State management configuration."""

    db_path: str = Field(
        default="./listing_migration_state.db",
        description="Path to state database file or a full database URL",
    )
    db_pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Number of connections to maintain in the pool (PostgreSQL only)",
    )
    db_max_overflow: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of connections to create beyond pool_size (PostgreSQL only)",
    )
    db_pool_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Timeout in seconds for getting a connection from the pool",
    )
    db_pool_recycle: int = Field(
        default=3600,
        ge=60,
        le=28800,
        description="Recycle connections after this many seconds",
    )
    lock_lease_seconds: int = Field(
        default=300,
        ge=5,
        le=3600,
        description="Seconds before an unreleased adapter lock is considered stale",
    )

    @property
    def database_url(self) -> str:
        """Database URL derived from db_path (plain paths are SQLite files)."""
        if self.db_path.startswith(("postgresql://", "postgresql+", "sqlite://", "mysql://")):
            return self.db_path
        return f"sqlite:///{self.db_path}"


class PerformanceConfig(BaseModel):
    """Batch sizing and tick configuration."""

    job_batch_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Items per queued batch job (bounds the work done in one drain tick)",
    )
    parse_page_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Source rows enumerated per sequencer call when fanning work out to jobs",
    )
    max_stage_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Consecutive unexpected failures before a stage is skipped",
    )
    tick_interval: float = Field(
        default=0.0,
        ge=0.0,
        le=60.0,
        description="Seconds to sleep between ticks when running to completion",
    )

    @model_validator(mode="after")
    def validate_page_covers_batch(self) -> "PerformanceConfig":
        """A parse page smaller than one job would only ever produce partial jobs."""
        if self.parse_page_size < self.job_batch_size:
            raise ValueError(
                f"parse_page_size ({self.parse_page_size}) must be at least "
                f"job_batch_size ({self.job_batch_size})"
            )
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")
    max_log_entries: int = Field(
        default=5000,
        ge=100,
        le=1_000_000,
        description="Import log entries kept per adapter (oldest are pruned)",
    )
    max_log_batch: int = Field(
        default=500,
        ge=10,
        le=10000,
        description="Maximum import log entries returned by a single poll",
    )

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LISTING_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    state: StateConfig = Field(default_factory=StateConfig, description="State configuration")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    # Source adapters: adapter id -> "package.module:ClassName"
    adapters: dict[str, str] = Field(
        default_factory=dict, description="Source adapters available for migration"
    )
    destination_writer: str | None = Field(
        default=None,
        description="Import path of the destination writer ('package.module:ClassName')",
    )

    dry_run: bool = Field(
        default=False, description="Force dry-run mode for every started migration"
    )

    @field_validator("adapters")
    @classmethod
    def validate_adapters(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate adapter import paths."""
        for adapter_id, import_path in v.items():
            if ":" not in import_path:
                raise ValueError(
                    f"Adapter '{adapter_id}' must use 'package.module:ClassName' syntax"
                )
        return v


_ENV_PATTERN = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    ``${NAME}`` and ``${NAME:-default}`` anywhere in a string value are
    replaced from the environment (after loading ``.env``).

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is empty or references an unset variable
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    return MigrationConfig(**_expand_env_vars(config_data))


def _expand_env_vars(data: Any) -> Any:
    """Recursively substitute environment variables in strings of a config tree."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if not isinstance(data, str):
        return data

    def substitute(match: re.Match) -> str:
        value = os.environ.get(match["name"], match["default"])
        if value is None:
            raise ValueError(
                f"Environment variable '{match['name']}' not found. "
                f"Set it in your environment or .env file."
            )
        return value

    return _ENV_PATTERN.sub(substitute, data)


def save_config_to_yaml(config: MigrationConfig, output_path: str | Path) -> None:
    """Write a configuration as YAML, creating parent directories."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
