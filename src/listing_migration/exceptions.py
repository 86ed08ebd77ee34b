"""Custom exceptions for listing-bridge.

This module defines the exception hierarchy used across the migration
pipeline. Item- and stage-level errors are recovered locally into counters
and log entries; state errors are infrastructure failures and always
propagate to the caller.
"""


class ListingMigrationError(Exception):
    """Base exception for all listing migration errors."""

    pass


class ConfigurationError(ListingMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(ListingMigrationError):
    """Raised when user-supplied import settings are invalid.

    Surfaced immediately from ``start`` and never persisted as task state.
    """

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        """Initialize validation error.

        Args:
            message: Error message
            errors: Optional per-field error messages
        """
        self.message = message
        self.errors = errors or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with per-field details."""
        if not self.errors:
            return self.message
        details = "; ".join(f"{field}: {error}" for field, error in sorted(self.errors.items()))
        return f"{self.message} ({details})"


class AdapterError(ListingMigrationError):
    """Raised when a source adapter is unknown or violates its contract."""

    pass


class ItemError(ListingMigrationError):
    """Raised by an importer when a single row cannot be migrated.

    The row is counted as failed and processing continues with the next one.
    """

    pass


class StageError(ListingMigrationError):
    """Raised when a whole stage cannot run (e.g. missing source table).

    The sequencer logs the error and advances past the stage.
    """

    pass


class StateError(ListingMigrationError):
    """Raised when state management errors occur."""

    pass


class CheckpointError(StateError):
    """Raised when checkpoint store operations fail."""

    pass


class QueueError(StateError):
    """Raised when the batch queue cannot persist or pop jobs."""

    pass


class LockBusyError(StateError):
    """Raised when another execution context holds the adapter lock."""

    def __init__(self, lock_key: str, owner: str | None = None):
        """Initialize lock busy error.

        Args:
            lock_key: Key of the contended lock
            owner: Token of the current holder, if known
        """
        self.lock_key = lock_key
        self.owner = owner
        super().__init__(f"Lock '{lock_key}' is held by another worker")
