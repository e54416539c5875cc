# ABOUTME: MOBI (PalmDB/Mobipocket) metadata extraction from the binary headers with struct.
# ABOUTME: Reads title, EXTH description/date/language, and the cover image record.

import logging
import re
import struct
from dataclasses import dataclass

from shelfindex.errors import ParseError
from shelfindex.formats.covers import sniff_image_mime
from shelfindex.metadata.normalizer import clean_annotation, metadata_from_filename, strip_meta
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)

_PDB_HEADER_LEN = 78
_MOBI_MAGIC = b"MOBI"
_EXTH_MAGIC = b"EXTH"
_NO_IMAGE = 0xFFFFFFFF

EXTH_DESCRIPTION = 103
EXTH_PUBLISHING_DATE = 106
EXTH_COVER_OFFSET = 201
EXTH_UPDATED_TITLE = 503
EXTH_LANGUAGE = 524

# Windows primary language IDs (low byte of the MOBI locale) to ISO 639-1.
_LOCALE_LANGUAGES = {
    0x01: "ar",
    0x02: "bg",
    0x03: "ca",
    0x04: "zh",
    0x05: "cs",
    0x06: "da",
    0x07: "de",
    0x08: "el",
    0x09: "en",
    0x0A: "es",
    0x0B: "fi",
    0x0C: "fr",
    0x0D: "he",
    0x0E: "hu",
    0x0F: "is",
    0x10: "it",
    0x11: "ja",
    0x12: "ko",
    0x13: "nl",
    0x14: "no",
    0x15: "pl",
    0x16: "pt",
    0x18: "ro",
    0x19: "ru",
    0x1A: "sr",
    0x1B: "sk",
    0x1C: "sq",
    0x1D: "sv",
    0x1E: "th",
    0x1F: "tr",
    0x21: "id",
    0x22: "uk",
    0x23: "be",
    0x24: "sl",
    0x25: "et",
    0x26: "lv",
    0x27: "lt",
    0x2A: "vi",
    0x2F: "mk",
    0x39: "hi",
    0x3E: "ms",
}

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class MobiHeader:
    """The parts of a MOBI file's headers used for metadata."""

    pdb_name: str
    full_name: str
    encoding: str
    locale: int
    first_image: int
    exth: dict[int, list[bytes]]
    records: list[tuple[int, int]]


def _record_bounds(data: bytes, count: int) -> list[tuple[int, int]]:
    offsets = [
        struct.unpack_from(">I", data, _PDB_HEADER_LEN + i * 8)[0] for i in range(count)
    ]
    bounds = []
    for index, start in enumerate(offsets):
        end = offsets[index + 1] if index + 1 < count else len(data)
        if not 0 < start <= end <= len(data):
            raise ParseError(f"PalmDB record {index} has invalid bounds {start}..{end}")
        bounds.append((start, end))
    return bounds


def _parse_exth(data: bytes, start: int) -> dict[int, list[bytes]]:
    records: dict[int, list[bytes]] = {}
    if data[start : start + 4] != _EXTH_MAGIC:
        return records
    _, count = struct.unpack_from(">II", data, start + 4)
    pos = start + 12
    for _ in range(count):
        kind, length = struct.unpack_from(">II", data, pos)
        if length < 8:
            break
        records.setdefault(kind, []).append(data[pos + 8 : pos + length])
        pos += length
    return records


def read_header(data: bytes) -> MobiHeader:
    """Parse the PalmDB and MOBI headers.

    Raises:
        ParseError: If the data is truncated or not a Mobipocket book.
    """
    if len(data) < _PDB_HEADER_LEN + 8:
        raise ParseError("File too short for a PalmDB header")
    try:
        pdb_name = data[:32].split(b"\x00", 1)[0].decode("latin-1")
        (count,) = struct.unpack_from(">H", data, 76)
        if count == 0:
            raise ParseError("PalmDB has no records")
        records = _record_bounds(data, count)

        rec0_start, rec0_end = records[0]
        rec0 = data[rec0_start:rec0_end]
        if rec0[16:20] != _MOBI_MAGIC:
            raise ParseError("Record 0 has no MOBI header")

        header_length, _, text_encoding = struct.unpack_from(">III", rec0, 20)
        encoding = "utf-8" if text_encoding == 65001 else "cp1252"
        name_offset, name_length, locale = struct.unpack_from(">III", rec0, 84)
        (first_image,) = struct.unpack_from(">I", rec0, 108)
        (exth_flags,) = struct.unpack_from(">I", rec0, 128)

        full_name = rec0[name_offset : name_offset + name_length].decode(encoding, "replace")
        exth = _parse_exth(rec0, 16 + header_length) if exth_flags & 0x40 else {}
    except struct.error as exc:
        raise ParseError(f"Truncated MOBI header: {exc}") from exc

    return MobiHeader(
        pdb_name=pdb_name,
        full_name=full_name,
        encoding=encoding,
        locale=locale,
        first_image=first_image,
        exth=exth,
        records=records,
    )


def _exth_text(header: MobiHeader, kind: int) -> str:
    values = header.exth.get(kind)
    if not values:
        return ""
    return values[0].decode(header.encoding, "replace").strip()


def _record(data: bytes, header: MobiHeader, index: int) -> bytes | None:
    if 0 <= index < len(header.records):
        start, end = header.records[index]
        return data[start:end]
    return None


def find_cover(data: bytes, header: MobiHeader) -> tuple[bytes | None, str]:
    """Cover from EXTH CoverOffset, else the first image record."""
    if header.first_image == _NO_IMAGE:
        return None, ""

    offsets = header.exth.get(EXTH_COVER_OFFSET)
    if offsets and len(offsets[0]) >= 4:
        (offset,) = struct.unpack_from(">I", offsets[0])
        record = _record(data, header, header.first_image + offset)
        if record and (mime := sniff_image_mime(record)):
            return record, mime

    for index in range(header.first_image, len(header.records)):
        record = _record(data, header, index)
        if record and (mime := sniff_image_mime(record)):
            return record, mime
    return None, ""


def _language(header: MobiHeader) -> str:
    explicit = _exth_text(header, EXTH_LANGUAGE)
    if explicit:
        return explicit.split("-")[0].lower()
    return _LOCALE_LANGUAGES.get(header.locale & 0xFF, "")


def parse_mobi(data: bytes, filename: str) -> BookMetadata:
    """Extract metadata from MOBI/AZW bytes.

    Authors, genres and series are left empty; only the title, annotation,
    date, language and cover come from the headers.

    Raises:
        ParseError: If the headers are truncated or not Mobipocket.
    """
    header = read_header(data)
    title = strip_meta(
        _exth_text(header, EXTH_UPDATED_TITLE) or header.full_name or header.pdb_name
    )
    if not title:
        title = metadata_from_filename(filename).title

    description = _TAG_RE.sub(" ", _exth_text(header, EXTH_DESCRIPTION))
    cover, cover_type = find_cover(data, header)

    return BookMetadata(
        title=title,
        annotation=clean_annotation(" ".join(description.split())),
        language=_language(header),
        docdate=_exth_text(header, EXTH_PUBLISHING_DATE),
        cover_image=cover,
        cover_type=cover_type,
    )
