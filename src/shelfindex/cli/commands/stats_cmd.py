# ABOUTME: The `shelfindex stats` command for catalog totals.
# ABOUTME: Shows the stored counters and the per-availability book breakdown.

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from shelfindex.cli.options import config_option, db_option, resolve_config
from shelfindex.db.sqlite import SqliteRepository
from shelfindex.errors import ShelfIndexError


@click.command("stats")
@config_option
@db_option
def stats(config_path: Path | None, db_path: Path | None) -> None:
    """Show catalog counters and book availability."""
    console = Console()
    try:
        config = resolve_config(config_path, db_path=db_path)
        repository = SqliteRepository(config.database.path)
        try:
            counters = repository.get_counters()
            availability = repository.availability_breakdown()
        finally:
            repository.close()
    except ShelfIndexError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise SystemExit(1) from exc

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Counter", style="bold", width=14)
    table.add_column("Value", justify="right")
    for name, value in counters.items():
        table.add_row(name, str(value))
    console.print(table)

    breakdown = Table(title="Availability")
    breakdown.add_column("State")
    breakdown.add_column("Books", justify="right")
    for state, count in availability.items():
        breakdown.add_row(state, str(count))
    console.print(breakdown)
