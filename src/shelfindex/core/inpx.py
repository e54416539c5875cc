# ABOUTME: INPX index parsing: a ZIP of .inp files, one 0x04-separated line per book.
# ABOUTME: Produces BookMetadata directly so indexed books never need their files opened.

import io
import logging
import zipfile
import zlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import PurePosixPath

from shelfindex.errors import IoError
from shelfindex.metadata.normalizer import strip_meta
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)

SEPARATOR = "\x04"

# Field positions in the default INP layout.
F_AUTHOR = 0
F_GENRE = 1
F_TITLE = 2
F_SERIES = 3
F_SERNO = 4
F_FILE = 5
F_SIZE = 6
F_LIBID = 7
F_DELETED = 8
F_EXT = 9
F_DATE = 10
F_LANG = 11
MIN_FIELDS = 12

# RuntimeError covers encrypted members and unsupported compression.
_ARCHIVE_ERRORS = (zipfile.BadZipFile, zlib.error, OSError, EOFError, RuntimeError)


@dataclass(frozen=True)
class InpxRecord:
    """One book listed in an .inp file."""

    folder: str
    filename: str
    format: str
    size: int
    metadata: BookMetadata


def _int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _author(raw: str) -> str:
    """Turn "Last,First,Middle" into "Last, First Middle"."""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]}, {' '.join(parts[1:])}"


def parse_inp_line(line: str, folder: str) -> InpxRecord | None:
    """Parse one .inp line; None for short, blank, or deleted records."""
    fields = line.rstrip("\r\n").split(SEPARATOR)
    if len(fields) < MIN_FIELDS:
        return None
    deleted = fields[F_DELETED].strip()
    if deleted and deleted != "0":
        return None

    stem = fields[F_FILE].strip()
    ext = fields[F_EXT].strip().lstrip(".")
    if not stem or not ext:
        return None

    authors = [a for a in (_author(raw) for raw in fields[F_AUTHOR].split(":")) if a]
    genres = [g for g in (strip_meta(raw).lower() for raw in fields[F_GENRE].split(":")) if g]
    series = strip_meta(fields[F_SERIES].split(":")[0]) or None

    metadata = BookMetadata(
        title=strip_meta(fields[F_TITLE]) or stem,
        authors=authors,
        genres=genres,
        series=series,
        series_index=_int(fields[F_SERNO]) if series else 0,
        language=strip_meta(fields[F_LANG]).lower(),
        docdate=strip_meta(fields[F_DATE]),
    )
    return InpxRecord(
        folder=folder,
        filename=f"{stem}.{ext}",
        format=ext.lower(),
        size=_int(fields[F_SIZE]),
        metadata=metadata,
    )


def folder_for(inp_name: str) -> str:
    """The archive holding an .inp file's books: "fb2-000001.inp" -> "fb2-000001.zip"."""
    return PurePosixPath(inp_name).stem + ".zip"


def iter_inp_records(lines: Iterable[str], folder: str) -> Iterator[InpxRecord]:
    for line in lines:
        if not line.strip():
            continue
        record = parse_inp_line(line, folder)
        if record is not None:
            yield record


def _member_records(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> Iterator[InpxRecord]:
    count = 0
    try:
        with io.TextIOWrapper(archive.open(info), encoding="utf-8", errors="replace") as lines:
            for record in iter_inp_records(lines, folder_for(info.filename)):
                count += 1
                yield record
    except _ARCHIVE_ERRORS as exc:
        raise IoError(f"Cannot read {info.filename} from INPX archive: {exc}") from exc
    logger.debug("%s: %d records", info.filename, count)


def _members(archive: zipfile.ZipFile) -> Iterator[tuple[str, Iterator[InpxRecord]]]:
    with archive:
        for info in archive.infolist():
            if info.filename.lower().endswith(".inp"):
                yield info.filename, _member_records(archive, info)


def read_inpx(data: bytes) -> Iterator[tuple[str, Iterator[InpxRecord]]]:
    """Open an INPX archive for lazy parsing of its .inp members.

    Each member is decompressed line by line while its records are
    consumed, so a large index is never held in memory at once. Consume a
    member's records before advancing to the next member.

    Returns:
        An iterator of (inp member name, iterator over its records) pairs
        in archive order. A member that turns out to be corrupt raises
        IoError while its records are read.

    Raises:
        IoError: If the archive itself is corrupt.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except _ARCHIVE_ERRORS as exc:
        raise IoError(f"Corrupt INPX archive: {exc}") from exc
    return _members(archive)
