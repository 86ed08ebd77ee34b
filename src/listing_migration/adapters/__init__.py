"""Source adapter contract and registry."""

from listing_migration.adapters.base import (
    DestinationWriter,
    JobHandler,
    SourceAdapter,
    StageHandler,
)
from listing_migration.adapters.registry import AdapterRegistry, load_destination_writer

__all__ = [
    "AdapterRegistry",
    "DestinationWriter",
    "JobHandler",
    "SourceAdapter",
    "StageHandler",
    "load_destination_writer",
]
