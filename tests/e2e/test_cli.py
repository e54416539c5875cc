# ABOUTME: End-to-end tests for the shelfindex CLI.
# ABOUTME: Runs scan, stats, and repair-duplicates via Click's CliRunner against temp libraries.

from pathlib import Path

import pytest
from click.testing import CliRunner

from shelfindex.cli import cli
from tests.fixtures.books import fb2_bytes


@pytest.fixture(autouse=True)
def _work_in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the default relative covers directory inside tmp_path."""
    monkeypatch.chdir(tmp_path)


class TestCliScan:
    """E2e tests for `shelfindex scan`."""

    def test_scan_prints_summary(self, library_root: Path, sample_fb2: Path, db_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", str(library_root), "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "Scan summary" in result.output
        assert "Inserted" in result.output
        assert db_path.exists()

    def test_second_scan_reports_unchanged(
        self, library_root: Path, sample_fb2: Path, db_path: Path
    ) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(library_root), "--db", str(db_path)])
        result = runner.invoke(cli, ["scan", "--root", str(library_root), "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "Unchanged" in result.output

    def test_corrupt_book_listed_in_errors(
        self, library_root: Path, corrupt_fb2: Path, db_path: Path
    ) -> None:
        """Per-book failures are reported but do not fail the command."""
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", str(library_root), "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "Errors (1 total)" in result.output
        assert "ParseError" in result.output

    def test_missing_root_fails(self, tmp_path: Path, db_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", str(tmp_path / "nowhere"), "--db", str(db_path)])
        assert result.exit_code == 1
        assert "Scan failed" in result.output

    def test_no_roots_fails(self, db_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", "--db", str(db_path)])
        assert result.exit_code == 1

    def test_invalid_workers_reports_error(self, library_root: Path, db_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(
            cli, ["scan", str(library_root), "--db", str(db_path), "--workers", "0"]
        )
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_scan_with_config_file(self, tmp_path: Path) -> None:
        """Roots, database, and covers paths come from the TOML file."""
        books = tmp_path / "shelf"
        books.mkdir()
        (books / "one.fb2").write_bytes(fb2_bytes(title="From Config"))
        config = tmp_path / "shelfindex.toml"
        config.write_text(
            '[library]\nroots = ["shelf"]\n\n'
            '[scanner]\nworkers_num = 2\n\n'
            '[database]\npath = "data/catalog.db"\n'
        )

        runner = CliRunner()
        result = runner.invoke(cli, ["scan", "--config", str(config)])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "data" / "catalog.db").exists()

    def test_invalid_config_reports_error(self, tmp_path: Path) -> None:
        config = tmp_path / "bad.toml"
        config.write_text("[scanner]\nworkers_num = 0\n")
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", "--config", str(config)])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestCliStats:
    """E2e tests for `shelfindex stats`."""

    def test_stats_after_scan(self, library_root: Path, sample_fb2: Path, db_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(library_root), "--db", str(db_path)])
        result = runner.invoke(cli, ["stats", "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "allbooks" in result.output
        assert "allauthors" in result.output
        assert "Availability" in result.output

    def test_stats_on_empty_database(self, db_path: Path) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["stats", "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "allcatalogs" in result.output


class TestCliRepair:
    """E2e tests for `shelfindex repair-duplicates`."""

    def test_clean_catalog_has_nothing_to_merge(
        self, library_root: Path, sample_fb2: Path, db_path: Path
    ) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["scan", str(library_root), "--db", str(db_path)])
        result = runner.invoke(cli, ["repair-duplicates", "--db", str(db_path)])
        assert result.exit_code == 0, result.output
        assert "No duplicates found." in result.output


class TestCliGroup:
    def test_help_lists_commands(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("scan", "watch", "repair-duplicates", "stats"):
            assert command in result.output

    def test_version(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_watch_help(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["watch", "--help"])
        assert result.exit_code == 0
        assert "--poll" in result.output
