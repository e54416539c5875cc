# ABOUTME: Shared Click options for shelfindex CLI commands.
# ABOUTME: Provides reusable --db/--config/--workers decorators and config resolution.

from pathlib import Path

import click

from shelfindex.config import AppConfig, load_config, with_overrides
from shelfindex.db.connection import DEFAULT_DB_PATH

db_option = click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help=f"Path to catalog database (default: {DEFAULT_DB_PATH})",
)

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TOML configuration file.",
)

workers_option = click.option(
    "--workers",
    type=int,
    default=None,
    help="Number of reconciliation worker threads.",
)


def resolve_config(
    config_path: Path | None,
    *,
    roots: tuple[Path, ...] = (),
    db_path: Path | None = None,
    workers: int | None = None,
) -> AppConfig:
    """Load the config file (or defaults) and apply command-line overrides."""
    config = load_config(config_path) if config_path else AppConfig()
    return with_overrides(config, roots=roots or None, db_path=db_path, workers=workers)
