# ABOUTME: Unit tests for FB2 metadata extraction.
# ABOUTME: Validates title-info fields, cover lookup, and ParseError on malformed documents.

import pytest

from shelfindex.errors import ParseError
from shelfindex.formats.fb2 import parse_fb2
from tests.fixtures.books import fb2_bytes, png_bytes


class TestParseFb2:
    """Tests for parse_fb2 on well-formed documents."""

    def test_basic_fields(self) -> None:
        metadata = parse_fb2(fb2_bytes(), "test.fb2")
        assert metadata.title == "Test"
        assert metadata.authors == ["A. Author"]
        assert metadata.genres == ["sf_fantasy"]
        assert metadata.language == "en"
        assert metadata.docdate == "2020"
        assert metadata.extract_error is None

    def test_multiple_authors_and_genres(self) -> None:
        data = fb2_bytes(
            authors=[("Jane", "Doe"), ("John", "Smith")],
            genres=["SF_Space", "det_classic"],
        )
        metadata = parse_fb2(data, "x.fb2")
        assert metadata.authors == ["Jane Doe", "John Smith"]
        assert metadata.genres == ["sf_space", "det_classic"]

    def test_series(self) -> None:
        metadata = parse_fb2(fb2_bytes(series=("Dune Chronicles", 2)), "x.fb2")
        assert metadata.series == "Dune Chronicles"
        assert metadata.series_index == 2

    def test_annotation_paragraphs_joined(self) -> None:
        metadata = parse_fb2(fb2_bytes(annotation=["First.", "Second."]), "x.fb2")
        assert metadata.annotation == "First.\nSecond."

    def test_cover_from_coverpage_reference(self) -> None:
        cover = png_bytes()
        metadata = parse_fb2(fb2_bytes(cover=cover), "x.fb2")
        assert metadata.cover_image == cover
        assert metadata.cover_type == "image/png"
        assert metadata.has_cover

    def test_no_cover(self) -> None:
        metadata = parse_fb2(fb2_bytes(), "x.fb2")
        assert metadata.cover_image is None
        assert not metadata.has_cover

    def test_missing_title_falls_back_to_filename(self) -> None:
        metadata = parse_fb2(fb2_bytes(title=""), "Dune Messiah.fb2")
        assert metadata.title == "Dune Messiah"

    def test_windows_1251_document(self) -> None:
        document = (
            '<?xml version="1.0" encoding="windows-1251"?>'
            "<FictionBook><description><title-info>"
            "<book-title>Мастер и Маргарита</book-title>"
            "</title-info></description></FictionBook>"
        ).encode("cp1251")
        assert parse_fb2(document, "x.fb2").title == "Мастер и Маргарита"


class TestParseFb2Errors:
    """Tests for malformed input."""

    def test_malformed_xml(self) -> None:
        with pytest.raises(ParseError, match="Malformed"):
            parse_fb2(b"<FictionBook><description>", "bad.fb2")

    def test_wrong_root_element(self) -> None:
        with pytest.raises(ParseError, match="not a FictionBook"):
            parse_fb2(b"<html><body/></html>", "page.fb2")
