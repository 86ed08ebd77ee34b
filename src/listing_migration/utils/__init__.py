"""Utility modules for listing-bridge."""

from listing_migration.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
