# ABOUTME: Unit tests for MOBI header parsing and metadata extraction.
# ABOUTME: Uses synthetic PalmDB files to check titles, EXTH records, languages, and covers.

import pytest

from shelfindex.errors import ParseError
from shelfindex.formats.mobi import (
    EXTH_COVER_OFFSET,
    EXTH_DESCRIPTION,
    EXTH_LANGUAGE,
    EXTH_PUBLISHING_DATE,
    EXTH_UPDATED_TITLE,
    parse_mobi,
    read_header,
)
from tests.fixtures.books import mobi_bytes, png_bytes


class TestReadHeader:
    def test_reads_names_and_records(self) -> None:
        header = read_header(mobi_bytes(full_name="Full Name", pdb_name="Short"))
        assert header.full_name == "Full Name"
        assert header.pdb_name == "Short"
        assert header.encoding == "utf-8"
        assert len(header.records) == 2

    def test_too_short(self) -> None:
        with pytest.raises(ParseError, match="too short"):
            read_header(b"BOOKMOBI")

    def test_missing_mobi_magic(self) -> None:
        data = bytearray(mobi_bytes())
        start = int.from_bytes(data[78:82], "big")
        data[start + 16 : start + 20] = b"XXXX"
        with pytest.raises(ParseError, match="no MOBI header"):
            read_header(bytes(data))


class TestParseMobi:
    """Tests for parse_mobi."""

    def test_title_from_full_name(self) -> None:
        metadata = parse_mobi(mobi_bytes(full_name="The Hobbit"), "hobbit.mobi")
        assert metadata.title == "The Hobbit"
        assert metadata.authors == []
        assert metadata.genres == []

    def test_updated_title_preferred(self) -> None:
        data = mobi_bytes(full_name="Old", exth={EXTH_UPDATED_TITLE: b"New Title"})
        assert parse_mobi(data, "x.mobi").title == "New Title"

    def test_exth_description_and_date(self) -> None:
        data = mobi_bytes(
            exth={
                EXTH_DESCRIPTION: b"<p>An <b>adventure</b>.</p>",
                EXTH_PUBLISHING_DATE: b"1937-09-21",
            }
        )
        metadata = parse_mobi(data, "x.mobi")
        assert metadata.annotation == "An adventure ."
        assert metadata.docdate == "1937-09-21"

    def test_language_from_locale(self) -> None:
        assert parse_mobi(mobi_bytes(locale=0x19), "x.mobi").language == "ru"

    def test_language_from_exth(self) -> None:
        data = mobi_bytes(exth={EXTH_LANGUAGE: b"de-DE"})
        assert parse_mobi(data, "x.mobi").language == "de"

    def test_cover_from_exth_offset(self) -> None:
        first, second = png_bytes(color="blue"), png_bytes(color="green")
        data = mobi_bytes(exth={EXTH_COVER_OFFSET: (1).to_bytes(4, "big")}, images=[first, second])
        metadata = parse_mobi(data, "x.mobi")
        assert metadata.cover_image == second
        assert metadata.cover_type == "image/png"

    def test_cover_falls_back_to_first_image(self) -> None:
        image = png_bytes()
        metadata = parse_mobi(mobi_bytes(images=[image]), "x.mobi")
        assert metadata.cover_image == image

    def test_no_images(self) -> None:
        assert parse_mobi(mobi_bytes(), "x.mobi").cover_image is None

    def test_garbage_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_mobi(b"\x00" * 200, "x.mobi")
