# ABOUTME: The `shelfindex scan` command: one full scan of the library roots.
# ABOUTME: Runs through the scan scheduler and prints a summary table of outcomes and errors.

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from shelfindex.cli.options import config_option, db_option, resolve_config, workers_option
from shelfindex.core.scanner import LibraryScanner, ScanSummary
from shelfindex.core.scheduler import ScanScheduler, ScanState
from shelfindex.db.sqlite import SqliteRepository
from shelfindex.errors import ShelfIndexError


def print_summary(console: Console, summary: ScanSummary) -> None:
    """Render a scan summary as a table, followed by sampled errors."""
    table = Table(title="Scan summary")
    table.add_column("Outcome", style="bold")
    table.add_column("Books", justify="right")
    table.add_row("Inserted", str(summary.inserted))
    table.add_row("Updated", str(summary.updated))
    table.add_row("Unchanged", str(summary.unchanged))
    table.add_row("Deleted", str(summary.deleted))
    table.add_row("Failed", str(summary.failed), style="red" if summary.failed else None)
    if summary.archives_skipped:
        table.add_row("Archives skipped", str(summary.archives_skipped), style="dim")
    console.print(table)

    if summary.errors:
        errors = Table(title=f"Errors ({summary.total_errors} total)")
        errors.add_column("Kind", style="red")
        errors.add_column("Path")
        errors.add_column("Message", style="dim")
        for error in summary.errors:
            errors.add_row(error.kind, error.path, error.message)
        console.print(errors)

    if summary.cancelled:
        console.print("[yellow]Scan was cancelled; missing books were not marked deleted.[/yellow]")


@click.command("scan")
@click.argument("roots", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--root",
    "extra_roots",
    multiple=True,
    type=click.Path(path_type=Path),
    help="Library root to scan (repeatable).",
)
@config_option
@db_option
@workers_option
def scan(
    roots: tuple[Path, ...],
    extra_roots: tuple[Path, ...],
    config_path: Path | None,
    db_path: Path | None,
    workers: int | None,
) -> None:
    """Scan library roots once and reconcile the catalog."""
    console = Console()
    try:
        config = resolve_config(
            config_path, roots=roots + extra_roots, db_path=db_path, workers=workers
        )
        repository = SqliteRepository(config.database.path)
    except ShelfIndexError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise SystemExit(1) from exc

    try:
        scanner = LibraryScanner(config, repository)
        scheduler = ScanScheduler(scanner.scan, config.scanner.schedule)
        summary = scheduler.run_once()
    finally:
        repository.close()

    if scheduler.state == ScanState.FAILED:
        console.print(f"[red]Scan failed:[/red] {scheduler.last_error}")
        raise SystemExit(1)

    print_summary(console, summary)
