# ABOUTME: The `shelfindex watch` command: runs scans on the configured schedule.
# ABOUTME: Optionally scans immediately, then fires on each matching minute until interrupted.

from pathlib import Path

import click
from rich.console import Console

from shelfindex.cli.commands.scan_cmd import print_summary
from shelfindex.cli.options import config_option, db_option, resolve_config, workers_option
from shelfindex.core.scanner import LibraryScanner
from shelfindex.core.scheduler import ScanScheduler, ScanState
from shelfindex.db.sqlite import SqliteRepository
from shelfindex.errors import ShelfIndexError


@click.command("watch")
@click.option(
    "--root",
    "roots",
    multiple=True,
    type=click.Path(path_type=Path),
    help="Library root to scan (repeatable).",
)
@config_option
@db_option
@workers_option
@click.option("--now", "scan_now", is_flag=True, default=False, help="Scan once before waiting.")
@click.option(
    "--poll",
    "poll_seconds",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds between schedule checks.",
)
def watch(
    roots: tuple[Path, ...],
    config_path: Path | None,
    db_path: Path | None,
    workers: int | None,
    scan_now: bool,
    poll_seconds: float,
) -> None:
    """Keep the catalog current by scanning on the configured schedule."""
    console = Console()
    try:
        config = resolve_config(config_path, roots=roots, db_path=db_path, workers=workers)
        repository = SqliteRepository(config.database.path)
    except ShelfIndexError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise SystemExit(1) from exc

    scanner = LibraryScanner(config, repository)
    scheduler = ScanScheduler(scanner.scan, config.scanner.schedule)
    console.print(f"Schedule: {config.scanner.schedule.describe()}")
    try:
        if scan_now:
            summary = scheduler.run_once()
            if scheduler.state == ScanState.FAILED:
                console.print(f"[red]Scan failed:[/red] {scheduler.last_error}")
            elif summary is not None:
                print_summary(console, summary)
        scheduler.run_forever(poll_seconds=poll_seconds)
    except KeyboardInterrupt:
        console.print("Stopping...")
        scheduler.stop()
    finally:
        repository.close()
