"""
Configuration management commands.

This module provides commands for validating, showing and creating
migration configuration files.
"""

from pathlib import Path

import click

from listing_migration.cli.context import CLIContext
from listing_migration.cli.decorators import handle_errors, pass_context, requires_config
from listing_migration.cli.utils import echo_info, echo_success, echo_warning, print_table
from listing_migration.config import MigrationConfig, save_config_to_yaml
from listing_migration.exceptions import StateError
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and manage migration configuration files.
    """
    pass


def _display_config_summary(config: MigrationConfig) -> None:
    """Display configuration summary."""
    rows = [
        ["State Database", config.state.database_url],
        ["Lock Lease (s)", config.state.lock_lease_seconds],
        ["Job Batch Size", config.performance.job_batch_size],
        ["Parse Page Size", config.performance.parse_page_size],
        ["Max Stage Attempts", config.performance.max_stage_attempts],
        ["Max Log Entries", config.logging.max_log_entries],
        ["Dry Run", "yes" if config.dry_run else "no"],
        ["Destination Writer", config.destination_writer or "-"],
    ]

    print_table("Configuration Summary", ["Setting", "Value"], rows)


@config.command(name="validate")
@pass_context
@requires_config
@handle_errors
def validate(ctx: CLIContext) -> None:
    """Validate migration configuration.

    Loads the configuration, imports every configured adapter and the
    destination writer, opens the state database and checks each adapter's
    stage declarations.

    Examples:

        listing-bridge config validate --config config.yaml
    """
    echo_info(f"Validating configuration: {ctx.config_path}")

    click.echo()
    _display_config_summary(ctx.config)

    if ctx.database.check_connection():
        echo_success(f"State database: {ctx.config.state.database_url}")
    else:
        raise StateError(f"State database unreachable: {ctx.config.state.database_url}")

    registry = ctx.registry
    if len(registry) == 0:
        echo_warning("No adapters configured")
    for adapter in registry:
        echo_success(f"Adapter '{adapter.adapter_id}': {len(adapter.stages)} stages")

    if ctx.config.destination_writer:
        _ = ctx.writer
        echo_success(f"Destination writer: {ctx.config.destination_writer}")
    else:
        echo_warning("No destination writer configured (only dry runs are possible)")

    click.echo()
    echo_success("Configuration is valid!")


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: CLIContext) -> None:
    """Display current configuration."""
    config = ctx.config

    _display_config_summary(config)

    if config.adapters:
        rows = [[adapter_id, path] for adapter_id, path in sorted(config.adapters.items())]
        print_table("Adapters", ["ID", "Import Path"], rows)


@config.command(name="init")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@handle_errors
def init(output: Path, force: bool) -> None:
    """Write a configuration file with default values to OUTPUT."""
    if output.exists() and not force and not click.confirm(f"File {output} already exists. Overwrite?"):
        echo_info("Cancelled")
        return

    save_config_to_yaml(MigrationConfig(), output)
    echo_success(f"Configuration written to {output}")
