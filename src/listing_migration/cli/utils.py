"""
Utility functions for CLI commands.

This module provides helper functions for formatting output, rendering
import logs, and parsing settings supplied on the command line.
"""

import json
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from listing_migration.migration.task import UploadedFile

console = Console()

_SEVERITY_STYLES = {
    "info": "white",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red to stderr."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def format_count(count: int) -> str:
    """
    Format large numbers with thousands separator.

    Args:
        count: Number to format

    Returns:
        Formatted number (e.g., "1,234,567")
    """
    return f"{count:,}"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """
    Print statistics in a two-column table.

    Args:
        stats: Dictionary of statistics
        title: Table title
    """
    rows = [[key.replace("_", " ").title(), str(value)] for key, value in stats.items()]
    print_table(title, ["Metric", "Value"], rows)


def print_logs(logs: list[dict[str, str]]) -> None:
    """Print rendered import log entries colored by severity."""
    for entry in logs:
        style = _SEVERITY_STYLES.get(entry.get("status", "info"), "white")
        console.print(entry["message"], style=style, markup=False, highlight=False)


def create_progress_bar(description: str = "Migrating") -> Progress:
    """
    Create a progress bar with standard formatting.

    Args:
        description: Description text for progress bar

    Returns:
        Rich Progress object
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def parse_settings(
    settings_file: Path | None = None, pairs: tuple[str, ...] = ()
) -> dict[str, Any]:
    """
    Build raw import settings from a YAML/JSON file and KEY=VALUE pairs.

    Values of pairs are parsed as YAML scalars, so ``author_id=3`` yields an
    integer and ``dry_run=true`` a boolean. Pairs override the file.

    Raises:
        click.BadParameter: If the file or a pair is malformed
    """
    settings: dict[str, Any] = {}

    if settings_file is not None:
        settings.update(load_json_or_yaml(settings_file))

    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got '{pair}'", param_hint="--setting")
        settings[key.strip()] = yaml.safe_load(value) if value else ""

    return settings


def describe_files(paths: tuple[Path, ...]) -> list[UploadedFile]:
    """Describe files passed on the command line as uploaded files."""
    return [
        UploadedFile(
            name=path.name,
            size=path.stat().st_size,
            extension=path.suffix.lstrip(".").lower(),
            path=str(path),
        )
        for path in paths
    ]


def load_json_or_yaml(path: Path) -> dict[str, Any]:
    """
    Load JSON or YAML file based on extension.

    Args:
        path: Path to file

    Returns:
        Parsed mapping

    Raises:
        click.BadParameter: If the file cannot be parsed or is not a mapping
    """
    try:
        with open(path) as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise click.BadParameter(f"Cannot read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a mapping")
    return data
