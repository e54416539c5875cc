# ABOUTME: Format dispatch: maps a file extension to its extractor and runs it.
# ABOUTME: extract_or_degrade() turns parse failures into filename metadata with extract_error.

import logging
import struct
import zipfile
import zlib
from enum import StrEnum
from pathlib import PurePosixPath

from shelfindex.errors import ParseError
from shelfindex.formats.epub import parse_epub
from shelfindex.formats.external import ExternalTools, parse_djvu, parse_pdf
from shelfindex.formats.fb2 import parse_fb2
from shelfindex.formats.mobi import parse_mobi
from shelfindex.metadata.normalizer import metadata_from_filename
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)


class BookFormat(StrEnum):
    """Formats with a dedicated extractor."""

    FB2 = "fb2"
    EPUB = "epub"
    MOBI = "mobi"
    PDF = "pdf"
    DJVU = "djvu"


# Extensions that are the same container format under another name.
_ALIASES = {
    "azw": BookFormat.MOBI,
    "azw3": BookFormat.MOBI,
    "prc": BookFormat.MOBI,
    "djv": BookFormat.DJVU,
}

# Raised by zipfile, lxml, and the decoders on content they cannot handle.
_CONTENT_ERRORS = (
    ValueError,
    LookupError,
    ArithmeticError,
    RuntimeError,
    EOFError,
    struct.error,
    zlib.error,
    zipfile.BadZipFile,
)


def file_extension(filename: str) -> str:
    """Lowercased extension without the dot ("" when there is none)."""
    return PurePosixPath(filename.replace("\\", "/")).suffix.lstrip(".").lower()


def format_for(filename: str) -> BookFormat | None:
    """The extractor format for a filename, or None for formats indexed by name only."""
    ext = file_extension(filename)
    if ext in _ALIASES:
        return _ALIASES[ext]
    try:
        return BookFormat(ext)
    except ValueError:
        return None


def extract(data: bytes, filename: str, tools: ExternalTools | None = None) -> BookMetadata:
    """Run the extractor for ``filename``'s format over ``data``.

    Extensions without a dedicated extractor (txt, doc, ...) get
    filename-derived metadata.

    Raises:
        ParseError: If the content is malformed for its format.
    """
    book_format = format_for(filename)
    if book_format is BookFormat.FB2:
        return parse_fb2(data, filename)
    if book_format is BookFormat.EPUB:
        return parse_epub(data, filename)
    if book_format is BookFormat.MOBI:
        return parse_mobi(data, filename)
    if book_format is BookFormat.PDF:
        return parse_pdf(data, filename, tools)
    if book_format is BookFormat.DJVU:
        return parse_djvu(data, filename, tools)
    return metadata_from_filename(filename)


def extract_or_degrade(
    data: bytes, filename: str, tools: ExternalTools | None = None
) -> BookMetadata:
    """Like extract(), but malformed content degrades to filename metadata.

    The returned metadata carries the parse failure in ``extract_error``.
    Errors an extractor library raises on content it cannot handle
    (unsupported compression, encrypted members, ...) degrade the same way.
    """
    try:
        return extract(data, filename, tools)
    except ParseError as exc:
        error = str(exc)
    except _CONTENT_ERRORS as exc:
        error = f"{type(exc).__name__}: {exc}"
    logger.warning("Cannot parse %s, using filename metadata: %s", filename, error)
    metadata = metadata_from_filename(filename)
    metadata.extract_error = error
    return metadata


__all__ = [
    "BookFormat",
    "ExternalTools",
    "extract",
    "extract_or_degrade",
    "file_extension",
    "format_for",
]
