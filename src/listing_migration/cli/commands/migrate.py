"""
Migration execution commands.

This module provides the commands that start, drive, observe and abort
adapter migrations through the polling service.
"""

from pathlib import Path

import click

from listing_migration.cli.context import CLIContext
from listing_migration.cli.decorators import handle_errors, pass_context, requires_config
from listing_migration.cli.utils import (
    console,
    create_progress_bar,
    describe_files,
    echo_info,
    echo_success,
    echo_warning,
    format_count,
    parse_settings,
    print_logs,
    print_stats,
    print_table,
)
from listing_migration.migration.service import TickResult
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)

ADAPTER_ID = click.argument("adapter_id")


@click.command(name="adapters")
@pass_context
@requires_config
@handle_errors
def adapters(ctx: CLIContext) -> None:
    """List configured source adapters and their stages."""
    rows = [
        [
            adapter.adapter_id,
            adapter.title or "-",
            ", ".join(stage.label for stage in adapter.stages),
            ", ".join(sorted(adapter.job_handlers())) or "-",
        ]
        for adapter in ctx.registry
    ]

    if not rows:
        echo_warning("No adapters configured")
        return

    print_table("Source Adapters", ["ID", "Title", "Stages", "Job Actions"], rows)


@click.command(name="start")
@ADAPTER_ID
@click.option(
    "--settings-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML or JSON file with import settings",
)
@click.option(
    "--setting",
    "-s",
    "pairs",
    multiple=True,
    metavar="KEY=VALUE",
    help="Import setting (repeatable, overrides --settings-file)",
)
@click.option(
    "--file",
    "-f",
    "files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File to hand to the adapter (repeatable)",
)
@click.option("--dry-run", is_flag=True, help="Run without writing to the destination")
@pass_context
@requires_config
@handle_errors
def start(
    ctx: CLIContext,
    adapter_id: str,
    settings_file: Path | None,
    pairs: tuple[str, ...],
    files: tuple[Path, ...],
    dry_run: bool,
) -> None:
    """Start a migration for ADAPTER_ID.

    Clears the previous run of the adapter, counts the items to migrate and
    performs the first step. Use `tick` or `run` to continue it.

    Examples:

        listing-bridge start directorist -s author_id=1 --config config.yaml

        listing-bridge start directorist --dry-run --config config.yaml
    """
    settings = parse_settings(settings_file, pairs)
    if dry_run:
        settings["dry_run"] = True

    result = ctx.service.start(adapter_id, settings, describe_files(files))

    echo_success(f"Migration started for '{adapter_id}' ({result.progress}%)")
    if result.complete:
        echo_info("Nothing left to do")


@click.command(name="tick")
@ADAPTER_ID
@click.option("--count", "-n", default=1, show_default=True, type=click.IntRange(min=1))
@pass_context
@requires_config
@handle_errors
def tick(ctx: CLIContext, adapter_id: str, count: int) -> None:
    """Perform COUNT steps of work for ADAPTER_ID.

    Meant for cron jobs: each step advances the current stage once and runs
    one queued batch job.
    """
    result: TickResult | None = None
    for _ in range(count):
        result = ctx.service.tick(adapter_id)
        if result.error:
            echo_warning(f"Step failed and will be retried: {result.error}")
        if not result.in_progress:
            break

    if result is not None and not result.in_progress:
        echo_success("Migration complete")
    else:
        stage = result.task.stage.label if result and result.task else "batch jobs"
        echo_info(f"In progress: {stage}")


@click.command(name="run")
@ADAPTER_ID
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many steps",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print import log entries")
@pass_context
@requires_config
@handle_errors
def run(ctx: CLIContext, adapter_id: str, max_ticks: int | None, quiet: bool) -> None:
    """Drive the migration of ADAPTER_ID until it completes.

    Prints import log entries as they are written and shows overall
    progress. Safe to interrupt: a later `run` continues where it stopped.
    """
    service = ctx.service
    cursor = 0

    if not service.is_in_progress(adapter_id):
        echo_info(f"No migration in progress for '{adapter_id}'. Use `start` first.")
        return

    with create_progress_bar(f"Migrating {adapter_id}") as progress_bar:
        bar = progress_bar.add_task(f"Migrating {adapter_id}", total=100)

        def on_tick(result: TickResult) -> None:
            nonlocal cursor
            poll = service.poll(adapter_id, cursor)
            if not quiet:
                for entry in poll.logs:
                    progress_bar.console.print(entry["message"], markup=False, highlight=False)
            if result.error:
                progress_bar.console.print(f"Step failed, retrying: {result.error}", style="yellow")
            cursor = poll.logs_shown
            progress_bar.update(bar, completed=poll.progress)

        ticks = service.run_until_complete(adapter_id, max_ticks=max_ticks, on_tick=on_tick)

    final = service.poll(adapter_id, cursor)
    if final.in_progress:
        echo_warning(f"Stopped after {format_count(ticks)} steps at {final.progress}%")
    else:
        echo_success(f"Migration complete after {format_count(ticks)} steps")


@click.command(name="poll")
@ADAPTER_ID
@click.option("--after", default=0, show_default=True, type=click.IntRange(min=0))
@pass_context
@requires_config
@handle_errors
def poll(ctx: CLIContext, adapter_id: str, after: int) -> None:
    """Show progress and log entries written after cursor AFTER."""
    result = ctx.service.poll(adapter_id, after)

    print_logs(result.logs)
    console.print(result.message)
    click.echo(f"Next cursor: {result.logs_shown}")


@click.command(name="logs")
@ADAPTER_ID
@click.option("--after", default=0, show_default=True, type=click.IntRange(min=0))
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Maximum entries")
@pass_context
@requires_config
@handle_errors
def logs(ctx: CLIContext, adapter_id: str, after: int, limit: int | None) -> None:
    """Print the import log of ADAPTER_ID."""
    progress = ctx.service.context(adapter_id).progress
    entries, _ = progress.get_logs(after, limit)

    if not entries:
        echo_info("No log entries")
        return

    print_logs([entry.to_display() for entry in entries])


@click.command(name="abort")
@ADAPTER_ID
@pass_context
@requires_config
@handle_errors
def abort(ctx: CLIContext, adapter_id: str) -> None:
    """Abort the migration of ADAPTER_ID.

    Pending batch jobs are removed. A job that is already running finishes,
    and records already written are kept.
    """
    ctx.service.abort(adapter_id)
    echo_warning(f"Migration aborted for '{adapter_id}'")


@click.command(name="status")
@ADAPTER_ID
@pass_context
@requires_config
@handle_errors
def status(ctx: CLIContext, adapter_id: str) -> None:
    """Show the persisted state of ADAPTER_ID."""
    snapshot = ctx.service.status(adapter_id)
    stats = snapshot.stats

    print_stats(
        {
            "stage": snapshot.stage or "finished",
            "offset": format_count(snapshot.offset),
            "in_progress": "yes" if snapshot.in_progress else "no",
            "progress": f"{snapshot.progress}%",
            "total": format_count(stats.total),
            "succeeded": format_count(stats.succeeded),
            "skipped": format_count(stats.skipped),
            "failed": format_count(stats.failed),
            "pending_jobs": format_count(snapshot.pending_jobs),
            "dry_run": "yes" if snapshot.dry_run else "no",
            "aborted": "yes" if snapshot.aborted else "no",
        },
        f"Migration Status: {adapter_id}",
    )

    if snapshot.mappings:
        rows = [
            [namespace, format_count(count)]
            for namespace, count in sorted(snapshot.mappings.items())
        ]
        print_table("ID Mappings", ["Namespace", "Count"], rows)
