"""
Decorators for CLI commands.

This module provides decorators for error handling, context passing,
and other common CLI patterns.
"""

import functools
from collections.abc import Callable

import click

from listing_migration.cli.context import CLIContext
from listing_migration.cli.utils import echo_error
from listing_migration.exceptions import (
    AdapterError,
    ConfigurationError,
    ListingMigrationError,
    LockBusyError,
    StateError,
    ValidationError,
)
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass CLIContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: CLIContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        cli_ctx: CLIContext = click_ctx.obj
        return f(cli_ctx, *args, **kwargs)

    return wrapper


# Exit code and operator hint per error type, most specific first
_ERROR_EXITS: list[tuple[type[Exception], int, str, str | None]] = [
    (
        ConfigurationError,
        2,
        "Configuration Error",
        "Please check your configuration file and ensure all required fields are set.",
    ),
    (ValidationError, 3, "Validation Error", None),
    (AdapterError, 4, "Adapter Error", None),
    (
        LockBusyError,
        6,
        "Busy",
        "Another worker is advancing this migration. Try again shortly.",
    ),
    (
        StateError,
        5,
        "State Error",
        "There was an error accessing migration state. "
        "The database may be corrupted or inaccessible.",
    ),
]


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to turn migration errors into exit codes.

    Exit codes:
        0: Success
        1: General error
        2: Configuration error
        3: Validation error (invalid import settings)
        4: Adapter error
        5: State error
        6: Adapter busy (another worker holds the lock)
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except (click.exceptions.Exit, click.ClickException):
            raise

        except ListingMigrationError as e:
            for error_type, exit_code, label, hint in _ERROR_EXITS:
                if isinstance(e, error_type):
                    break
            else:
                exit_code, label, hint = 1, "Error", None

            logger.error(label, error=str(e), error_type=type(e).__name__)

            if isinstance(e, ValidationError):
                echo_error(f"{label}: {e.message}")
                for field_name, message in sorted(e.errors.items()):
                    click.echo(f"  {field_name}: {message}", err=True)
            else:
                echo_error(f"{label}: {e}")

            if hint:
                click.echo(f"\n{hint}", err=True)
            raise click.exceptions.Exit(exit_code) from e

        except Exception as e:
            logger.error("Unexpected error", error=str(e), exc_info=True)
            echo_error(f"Unexpected Error: {e}")
            click.echo("\nAn unexpected error occurred. Please check the logs for details.", err=True)
            raise click.exceptions.Exit(1) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """
    Decorator to ensure configuration is loaded.

    This decorator checks that a configuration is available and loads it
    before executing the command.
    """

    @functools.wraps(f)
    def wrapper(ctx: CLIContext, *args, **kwargs):
        if ctx.config_path is None and ctx._config is None:
            click.echo(
                "Error: Configuration file required. "
                "Use --config option or set LISTING_BRIDGE_CONFIG.",
                err=True,
            )
            raise click.exceptions.Exit(2)

        try:
            _ = ctx.config
        except Exception as e:
            echo_error(f"Error loading configuration: {e}")
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper


def confirm_action(
    message: str = "Do you want to continue?",
    abort_message: str = "Operation cancelled.",
) -> Callable:
    """
    Decorator to prompt for confirmation before executing a command.

    Args:
        message: Confirmation prompt message
        abort_message: Message to show if user aborts
    """

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            ctx = click.get_current_context()
            if ctx.params.get("yes", False):
                return f(*args, **kwargs)

            if not click.confirm(message):
                click.echo(abort_message)
                raise click.exceptions.Exit(0)

            return f(*args, **kwargs)

        return wrapper

    return decorator
