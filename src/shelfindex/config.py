# ABOUTME: TOML configuration for shelfindex, mapped onto frozen dataclasses.
# ABOUTME: Validates every value up front and raises ConfigurationError on anything unusable.

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from shelfindex.core.scheduler import ScanSchedule
from shelfindex.db.connection import DEFAULT_DB_PATH
from shelfindex.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BOOK_EXTENSIONS = ("fb2", "epub", "mobi", "pdf", "djvu")
DEFAULT_SCHEDULE = "0 0,12 * * *"
DEFAULT_COVER_MAX_DIMENSION = 600
DEFAULT_COVER_QUALITY = 85


@dataclass(frozen=True)
class LibraryConfig:
    roots: tuple[Path, ...] = ()
    book_extensions: frozenset[str] = frozenset(DEFAULT_BOOK_EXTENSIONS)
    scan_zip: bool = True
    inpx_enable: bool = True
    # Codepage for ZIP member names stored without the UTF-8 flag.
    zip_codepage: str = "cp866"


@dataclass(frozen=True)
class ScannerConfig:
    workers_num: int = 1
    schedule: ScanSchedule = field(default_factory=lambda: ScanSchedule.parse(DEFAULT_SCHEDULE))
    skip_unchanged: bool = False
    db_retries: int = 3
    max_error_samples: int = 10


@dataclass(frozen=True)
class CoversConfig:
    covers_path: Path = Path("covers")
    cover_max_dimension_px: int = DEFAULT_COVER_MAX_DIMENSION
    cover_jpeg_quality: int = DEFAULT_COVER_QUALITY


@dataclass(frozen=True)
class ToolsConfig:
    pdf_covers: bool = True
    djvu_covers: bool = True
    pdf_render: str = "pdftoppm"
    pdf_info: str = "pdfinfo"
    djvu_render: str = "ddjvu"
    timeout: float = 60.0


@dataclass(frozen=True)
class DatabaseConfig:
    path: Path = DEFAULT_DB_PATH


@dataclass(frozen=True)
class AppConfig:
    library: LibraryConfig = field(default_factory=LibraryConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    covers: CoversConfig = field(default_factory=CoversConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    return value


def _bool(section: dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value


def _int(section: dict[str, Any], key: str, default: int, low: int, high: int | None = None) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    if value < low or (high is not None and value > high):
        bounds = f">= {low}" if high is None else f"in {low}..{high}"
        raise ConfigurationError(f"{key} must be {bounds}, got {value}")
    return value


def _str(section: dict[str, Any], key: str, default: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{key} must be a non-empty string, got {value!r}")
    return value


def _int_list(section: dict[str, Any], key: str) -> list[int] | None:
    if key not in section:
        return None
    value = section[key]
    if not isinstance(value, list):
        raise ConfigurationError(f"{key} must be a list of integers")
    return value


def _path(value: str, base: Path | None) -> Path:
    path = Path(os.path.expanduser(value))
    if base is not None and not path.is_absolute():
        path = base / path
    return path


def _parse_library(section: dict[str, Any], base: Path | None) -> LibraryConfig:
    roots_raw = section.get("roots")
    if roots_raw is None and "root_path" in section:
        roots_raw = [section["root_path"]]
    roots_raw = roots_raw or []
    if not isinstance(roots_raw, list) or not all(isinstance(r, str) for r in roots_raw):
        raise ConfigurationError("roots must be a list of paths")

    extensions_raw = section.get("book_extensions", list(DEFAULT_BOOK_EXTENSIONS))
    if isinstance(extensions_raw, str):
        extensions_raw = extensions_raw.split()
    if not isinstance(extensions_raw, list) or not all(isinstance(e, str) for e in extensions_raw):
        raise ConfigurationError("book_extensions must be a list of extensions")
    extensions = frozenset(e.strip().lstrip(".").lower() for e in extensions_raw if e.strip())
    if not extensions:
        raise ConfigurationError("book_extensions must not be empty")

    codepage = _str(section, "zip_codepage", "cp866")
    try:
        "".encode(codepage)
    except LookupError as exc:
        raise ConfigurationError(f"Unknown zip_codepage {codepage!r}") from exc

    return LibraryConfig(
        roots=tuple(_path(r, base) for r in roots_raw),
        book_extensions=extensions,
        scan_zip=_bool(section, "scan_zip", True),
        inpx_enable=_bool(section, "inpx_enable", True),
        zip_codepage=codepage,
    )


def _parse_schedule(section: dict[str, Any]) -> ScanSchedule:
    minutes = _int_list(section, "schedule_minutes")
    hours = _int_list(section, "schedule_hours")
    days = _int_list(section, "schedule_day_of_week")
    if "schedule" in section:
        if minutes is not None or hours is not None or days is not None:
            raise ConfigurationError("Use either schedule or schedule_* lists, not both")
        return ScanSchedule.parse(_str(section, "schedule", DEFAULT_SCHEDULE))
    if minutes is None and hours is None and days is None:
        return ScanSchedule.parse(DEFAULT_SCHEDULE)
    return ScanSchedule.from_lists(
        minutes=minutes if minutes is not None else [0],
        hours=hours if hours is not None else [0, 12],
        days_of_week=days or [],
    )


def parse_config(raw: dict[str, Any], base: Path | None = None) -> AppConfig:
    """Build an AppConfig from an already-decoded TOML document.

    Relative paths are resolved against ``base`` when given.

    Raises:
        ConfigurationError: If any value is missing its expected type or range.
    """
    library = _section(raw, "library")
    scanner = _section(raw, "scanner")
    covers = _section(raw, "covers")
    tools = _section(raw, "tools")
    database = _section(raw, "database")

    max_dimension = _int(covers, "cover_max_dimension_px", DEFAULT_COVER_MAX_DIMENSION, 0)

    return AppConfig(
        library=_parse_library(library, base),
        scanner=ScannerConfig(
            workers_num=_int(scanner, "workers_num", 1, 1),
            schedule=_parse_schedule(scanner),
            skip_unchanged=_bool(scanner, "skip_unchanged", False),
            db_retries=_int(scanner, "db_retries", 3, 0),
            max_error_samples=_int(scanner, "max_error_samples", 10, 0),
        ),
        covers=CoversConfig(
            covers_path=_path(_str(covers, "covers_path", "covers"), base),
            cover_max_dimension_px=max_dimension or DEFAULT_COVER_MAX_DIMENSION,
            cover_jpeg_quality=_int(covers, "cover_jpeg_quality", DEFAULT_COVER_QUALITY, 1, 100),
        ),
        tools=ToolsConfig(
            pdf_covers=_bool(tools, "pdf_covers", True),
            djvu_covers=_bool(tools, "djvu_covers", True),
            pdf_render=_str(tools, "pdf_render", "pdftoppm"),
            pdf_info=_str(tools, "pdf_info", "pdfinfo"),
            djvu_render=_str(tools, "djvu_render", "ddjvu"),
            timeout=float(_int(tools, "timeout", 60, 1)),
        ),
        database=DatabaseConfig(
            path=_path(database["path"], base) if "path" in database else DEFAULT_DB_PATH,
        ),
    )


def load_config(path: Path) -> AppConfig:
    """Read and validate a TOML configuration file.

    Relative paths inside the file are resolved against the file's directory.

    Raises:
        ConfigurationError: If the file is unreadable, not valid TOML, or invalid.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc
    logger.debug("Loaded configuration from %s", path)
    return parse_config(raw, base=path.parent)


def with_overrides(
    config: AppConfig,
    *,
    roots: tuple[Path, ...] | None = None,
    db_path: Path | None = None,
    workers: int | None = None,
    covers_path: Path | None = None,
) -> AppConfig:
    """Return a copy of ``config`` with command-line overrides applied."""
    if workers is not None and workers < 1:
        raise ConfigurationError(f"workers must be >= 1, got {workers}")
    library = replace(config.library, roots=roots) if roots else config.library
    scanner = replace(config.scanner, workers_num=workers) if workers else config.scanner
    database = replace(config.database, path=db_path) if db_path else config.database
    covers = replace(config.covers, covers_path=covers_path) if covers_path else config.covers
    return replace(config, library=library, scanner=scanner, database=database, covers=covers)


def validate_roots(roots: tuple[Path, ...]) -> None:
    """Check that every root is an existing, readable directory.

    Raises:
        ConfigurationError: If no roots are configured or any root is unusable.
    """
    if not roots:
        raise ConfigurationError("No library roots configured")
    for root in roots:
        if not root.is_dir():
            raise ConfigurationError(f"Library root {root} is not a directory")
        if not os.access(root, os.R_OK | os.X_OK):
            raise ConfigurationError(f"Library root {root} is not readable")
