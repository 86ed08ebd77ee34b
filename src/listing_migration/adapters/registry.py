"""
Registry of source adapters available for migration.
"""

import importlib
from typing import Any

from listing_migration.adapters.base import DestinationWriter, SourceAdapter
from listing_migration.config import MigrationConfig
from listing_migration.exceptions import AdapterError, ConfigurationError
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)


def import_from_string(import_path: str) -> Any:
    """
    Import an attribute given as 'package.module:Attribute'.

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported
    """
    module_name, _, attribute = import_path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Invalid import path '{import_path}' (expected 'module:Name')")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import module '{module_name}': {e}") from e

    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attribute}'") from e


class AdapterRegistry:
    """Validated source adapters keyed by adapter ID."""

    def __init__(self):
        self._adapters: dict[str, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter) -> SourceAdapter:
        """
        Validate and register an adapter.

        Raises:
            AdapterError: If the adapter is invalid or its ID is taken
        """
        adapter.validate()

        if adapter.adapter_id in self._adapters:
            raise AdapterError(f"Adapter '{adapter.adapter_id}' is already registered")

        self._adapters[adapter.adapter_id] = adapter
        logger.debug(
            "Adapter registered",
            adapter_id=adapter.adapter_id,
            stages=[stage.value for stage in adapter.stages],
        )
        return adapter

    def get(self, adapter_id: str) -> SourceAdapter:
        """
        Get a registered adapter.

        Raises:
            AdapterError: If no adapter has this ID
        """
        try:
            return self._adapters[adapter_id]
        except KeyError:
            available = ", ".join(self.ids()) or "none"
            raise AdapterError(
                f"Unknown adapter '{adapter_id}' (available: {available})"
            ) from None

    def ids(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, adapter_id: object) -> bool:
        return adapter_id in self._adapters

    def __iter__(self):
        return iter(self._adapters[adapter_id] for adapter_id in self.ids())

    def __len__(self) -> int:
        return len(self._adapters)

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "AdapterRegistry":
        """
        Build a registry from the adapters section of the configuration.

        Raises:
            ConfigurationError: If an adapter cannot be imported
            AdapterError: If an adapter is invalid or registered under the wrong ID
        """
        registry = cls()

        for adapter_id, import_path in config.adapters.items():
            adapter_class = import_from_string(import_path)
            adapter = adapter_class()

            if adapter.adapter_id != adapter_id:
                raise AdapterError(
                    f"Adapter configured as '{adapter_id}' declares adapter_id "
                    f"'{adapter.adapter_id}'"
                )

            registry.register(adapter)

        logger.info("Adapters loaded", adapters=registry.ids())
        return registry


def load_destination_writer(config: MigrationConfig) -> DestinationWriter | None:
    """
    Instantiate the configured destination writer.

    Returns:
        Writer instance, or None if no writer is configured

    Raises:
        ConfigurationError: If the writer cannot be imported or is incomplete
    """
    if not config.destination_writer:
        return None

    writer = import_from_string(config.destination_writer)()
    if not isinstance(writer, DestinationWriter):
        raise ConfigurationError(
            f"'{config.destination_writer}' does not implement the destination writer interface"
        )
    return writer
