# ABOUTME: CLI package for shelfindex, built on Click.
# ABOUTME: Defines the root command group, configures logging, and registers subcommands.

import logging

import click
from rich.logging import RichHandler

from shelfindex.cli.commands import repair_cmd, scan_cmd, stats_cmd, watch_cmd


@click.group()
@click.version_option(package_name="shelfindex")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log at DEBUG level.")
def cli(verbose: bool) -> None:
    """shelfindex - scans an e-book library into a searchable catalog."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


cli.add_command(scan_cmd.scan)
cli.add_command(watch_cmd.watch)
cli.add_command(repair_cmd.repair_duplicates)
cli.add_command(stats_cmd.stats)
