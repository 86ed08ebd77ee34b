"""
Main CLI entry point for listing-bridge.

This module provides the command-line interface for migrating directory
plugin data into the destination listing schema.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from listing_migration import __version__
from listing_migration.cli.commands import config as config_commands
from listing_migration.cli.commands import migrate as migrate_commands
from listing_migration.cli.commands import state as state_commands
from listing_migration.cli.context import CLIContext
from listing_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="listing-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="LISTING_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Console logging level [default: logging.level from the config file, else WARNING]",
    envvar="LISTING_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (defaults to logs/migration.log)",
    envvar="LISTING_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """listing-bridge - Migrate directory plugin data into one listing schema.

    A migration runs in small steps: `start` counts the items and performs
    the first step, `tick` (from cron) or `run` (interactive) continue it,
    `poll` reports progress and new log entries.

    Examples:

        # List configured adapters
        listing-bridge adapters --config config.yaml

        # Start and drive a migration
        listing-bridge start directorist -s author_id=1 --config config.yaml
        listing-bridge run directorist --config config.yaml

        # Show migration status
        listing-bridge status directorist --config config.yaml
    """
    effective_log_file = str(log_file) if log_file else "logs/migration.log"

    configure_logging(level=log_level or "WARNING", log_file=effective_log_file)

    # Tests and embedding hosts may hand in a prepared context
    if ctx.obj is None:
        ctx.obj = CLIContext(config_path=config, log_level=log_level, log_file=log_file)
    ctx.call_on_close(ctx.obj.cleanup)

    logger.debug(
        "CLI initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(config_commands.config)
cli.add_command(state_commands.state)

# Register standalone commands
cli.add_command(migrate_commands.adapters)
cli.add_command(migrate_commands.start)
cli.add_command(migrate_commands.tick)
cli.add_command(migrate_commands.run)
cli.add_command(migrate_commands.poll)
cli.add_command(migrate_commands.logs)
cli.add_command(migrate_commands.abort)
cli.add_command(migrate_commands.status)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # Commands exiting through click.exceptions.Exit come back as the return value
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except Exception as e:
        logger.error("Unexpected error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
