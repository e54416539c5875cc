# ABOUTME: The `shelfindex repair-duplicates` command for legacy catalogs.
# ABOUTME: Merges authors and series that share a name onto the lowest ID.

from pathlib import Path

import click
from rich.console import Console

from shelfindex.cli.options import config_option, db_option, resolve_config
from shelfindex.core.maintenance import repair_duplicates as run_repair
from shelfindex.db.sqlite import SqliteRepository
from shelfindex.errors import ShelfIndexError


@click.command("repair-duplicates")
@config_option
@db_option
def repair_duplicates(config_path: Path | None, db_path: Path | None) -> None:
    """Merge duplicate authors and series left by older catalogs."""
    console = Console()
    try:
        config = resolve_config(config_path, db_path=db_path)
        repository = SqliteRepository(config.database.path)
        try:
            result = run_repair(repository)
        finally:
            repository.close()
    except ShelfIndexError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise SystemExit(1) from exc

    if result.total_removed == 0:
        console.print("[green]No duplicates found.[/green]")
        return
    console.print(
        f"Removed [bold]{result.authors_removed}[/bold] duplicate author(s) and "
        f"[bold]{result.series_removed}[/bold] duplicate series."
    )
