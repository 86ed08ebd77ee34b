"""Tests for structured logging setup."""

import json
import logging

import pytest

from listing_migration import __version__
from listing_migration.utils.logging import adapter_log_context, configure_logging, get_logger


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "logs" / "migration.log"
    configure_logging(level="ERROR", log_file=str(path))
    yield path
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
        handler.close()


def read_entries(path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


class TestFileLogging:
    def test_entries_are_json_lines(self, log_file) -> None:
        get_logger("listing_migration.tests.json_lines").info("Batch jobs enqueued", count=3)

        entry = read_entries(log_file)[-1]
        assert entry["event"] == "Batch jobs enqueued"
        assert entry["count"] == 3
        assert entry["level"] == "info"
        assert entry["app"] == "listing-bridge"
        assert entry["version"] == __version__

    def test_adapter_context_is_bound(self, log_file) -> None:
        logger = get_logger("listing_migration.tests.context")

        with adapter_log_context("directorist", dry_run=True):
            logger.warning("Advance skipped")
        logger.warning("Outside")

        inside, outside = read_entries(log_file)[-2:]
        assert inside["adapter_id"] == "directorist"
        assert inside["dry_run"] is True
        assert "adapter_id" not in outside

    def test_stdlib_loggers_share_the_file(self, log_file) -> None:
        logging.getLogger("sqlalchemy.pool.impl").warning("pool exhausted")

        entry = read_entries(log_file)[-1]
        assert entry["event"] == "pool exhausted"
        assert entry["level"] == "warning"
