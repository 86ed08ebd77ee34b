"""Retry logic for state database writes using tenacity.

SQLite raises ``database is locked`` when a second connection writes while
another transaction is open. Those errors are transient, so state writes
are retried with exponential backoff before they surface as StateError.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from sqlalchemy.exc import OperationalError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from listing_migration.exceptions import StateError
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def is_database_locked(error: BaseException) -> bool:
    """Check whether an error is a transient database lock error.

    Args:
        error: Exception raised by a state write

    Returns:
        True if the error (or an error it wraps) is a lock timeout
    """
    cause: BaseException | None = error
    while isinstance(cause, StateError):
        cause = cause.__cause__
    if not isinstance(cause, OperationalError):
        return False
    message = str(cause).lower()
    return "database is locked" in message or "database table is locked" in message


def _log_retry(retry_state: RetryCallState) -> None:
    """Log a retry attempt."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "state_write_retrying",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        error=str(error),
    )


def retry_on_locked_database(
    max_attempts: int = 5, min_wait: float = 0.05, max_wait: float = 2.0
) -> Callable[[F], F]:
    """Retry decorator for writes that may hit a locked database.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: F) -> F:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
            retry=retry_if_exception(is_database_locked),
            before_sleep=_log_retry,
            reraise=True,
        )
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator
