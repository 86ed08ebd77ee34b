"""
State management commands.

This module provides commands for inspecting ID mappings, resetting an
adapter's migration state and releasing stale adapter locks.
"""

import click

from listing_migration.cli.context import CLIContext
from listing_migration.cli.decorators import (
    confirm_action,
    handle_errors,
    pass_context,
    requires_config,
)
from listing_migration.cli.utils import (
    echo_info,
    echo_success,
    echo_warning,
    format_count,
    print_table,
)
from listing_migration.migration.locking import pipeline_lock_key
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="state")
def state() -> None:
    """Migration state management commands.

    Inspect ID mappings and reset or unlock an adapter's migration state.
    """
    pass


@state.command(name="mappings")
@click.argument("adapter_id")
@click.option("--entity-type", "-e", help="Entity type to inspect (e.g. category)")
@click.option("--source-id", help="Show the mapping of one source ID (requires --entity-type)")
@pass_context
@requires_config
@handle_errors
def show_mappings(
    ctx: CLIContext, adapter_id: str, entity_type: str | None, source_id: str | None
) -> None:
    """Show ID mappings of ADAPTER_ID.

    Examples:

        # Mapping counts per entity type
        listing-bridge state mappings directorist --config config.yaml

        # Destination ID of one source category
        listing-bridge state mappings directorist -e category --source-id 17 --config config.yaml
    """
    resolver = ctx.service.context(adapter_id).resolver

    if source_id is not None:
        if not entity_type:
            raise click.UsageError("--source-id requires --entity-type")

        destination_id = resolver.resolve(resolver.namespace(entity_type), source_id)
        if destination_id is None:
            echo_warning(f"No mapping found for {entity_type} {source_id}")
        else:
            click.echo(f"{entity_type} {source_id} -> {destination_id}")
        return

    counts = resolver.counts_by_namespace()
    if entity_type:
        namespace = resolver.namespace(entity_type)
        counts = {namespace: counts.get(namespace, 0)}

    if not counts:
        echo_warning("No ID mappings found")
        return

    rows = [[namespace, format_count(count)] for namespace, count in sorted(counts.items())]
    print_table(f"ID Mappings: {adapter_id}", ["Namespace", "Count"], rows)


@state.command(name="reset")
@click.argument("adapter_id")
@click.option(
    "--include-mappings",
    is_flag=True,
    help="Also clear ID mappings (the next run creates new destination records)",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@requires_config
@handle_errors
@confirm_action(
    message="This will reset migration state. Are you sure?",
    abort_message="Reset cancelled",
)
def reset_state(ctx: CLIContext, adapter_id: str, include_mappings: bool, yes: bool) -> None:
    """Reset the migration state of ADAPTER_ID.

    Clears the task, settings, counters, import log and queued jobs. ID
    mappings are kept unless --include-mappings is given, so a later run
    updates the records created before.
    """
    if include_mappings:
        echo_warning("ID mappings will also be cleared")
    else:
        echo_info("ID mappings will be preserved")

    ctx.service.reset(adapter_id, include_mappings=include_mappings)
    echo_success(f"Reset migration state of '{adapter_id}'")


@state.command(name="unlock")
@click.argument("adapter_id")
@pass_context
@requires_config
@handle_errors
def unlock(ctx: CLIContext, adapter_id: str) -> None:
    """Release the lock of ADAPTER_ID left behind by a crashed worker."""
    if ctx.service.lock.force_release(pipeline_lock_key(adapter_id)):
        echo_success(f"Lock of '{adapter_id}' released")
    else:
        echo_info(f"'{adapter_id}' was not locked")
