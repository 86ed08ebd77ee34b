"""Logging configuration for listing-bridge using structlog.

Console output is rendered by rich for people watching a run; the log file
gets one JSON object per line so cron-driven runs can be inspected later.
Both go through structlog's ProcessorFormatter, so stdlib loggers (e.g.
SQLAlchemy, tenacity) share the same pipeline.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, Processor, WrappedLogger

from listing_migration import __version__

APP_NAME = "listing-bridge"


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the application name and version."""
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _file_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        processors: list[Processor] = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    return structlog.stdlib.ProcessorFormatter(
        processors=processors, foreign_pre_chain=_shared_processors()
    )


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: File output format ('json' or 'console'). Console output
            is always human-readable.
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG)
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)
    file_log_level = getattr(logging, (file_level or "DEBUG").upper(), logging.DEBUG)

    rich_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)
    rich_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(rich_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(_file_formatter(log_format))
        root_logger.addHandler(file_handler)

    # The filtering level must admit whatever the file handler wants to see
    min_level = min(console_level, file_log_level) if log_file else console_level

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


@contextmanager
def adapter_log_context(adapter_id: str, **extra: Any) -> Iterator[None]:
    """Bind ``adapter_id`` (and extra keys) to every log entry in the block."""
    with structlog.contextvars.bound_contextvars(adapter_id=adapter_id, **extra):
        yield


def log_migration_progress(
    logger: structlog.stdlib.BoundLogger,
    adapter_id: str,
    stage: str | None,
    processed: int,
    total: int,
    **extra: Any,
) -> None:
    """Log migration progress with structured data.

    Args:
        logger: Logger instance
        adapter_id: Adapter being migrated
        stage: Current stage (None once the sequencer has finished)
        processed: Number of items processed so far
        total: Total number of items expected
        **extra: Additional context to log
    """
    percentage = (processed / total * 100) if total > 0 else 0

    logger.info(
        "migration_progress",
        adapter_id=adapter_id,
        stage=stage,
        processed=processed,
        total=total,
        percentage=round(percentage, 2),
        **extra,
    )


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    context: str,
    **extra: Any,
) -> None:
    """Log an error with full context.

    Args:
        logger: Logger instance
        error: Exception that occurred
        context: Context where error occurred
        **extra: Additional context to log
    """
    logger.error(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
        **extra,
        exc_info=True,
    )
