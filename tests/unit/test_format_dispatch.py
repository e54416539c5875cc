# ABOUTME: Unit tests for format dispatch and graceful degradation.
# ABOUTME: Verifies extension mapping, aliases, and filename metadata on parse failures.

import pytest

from shelfindex.errors import ParseError
from shelfindex.formats import BookFormat, extract, extract_or_degrade, file_extension, format_for
from tests.fixtures.books import epub_bytes, fb2_bytes, mobi_bytes, opf_document


class TestFormatFor:
    def test_extensions(self) -> None:
        assert format_for("a.FB2") is BookFormat.FB2
        assert format_for("dir/b.epub") is BookFormat.EPUB
        assert format_for("c.pdf") is BookFormat.PDF

    def test_aliases(self) -> None:
        assert format_for("k.azw3") is BookFormat.MOBI
        assert format_for("d.djv") is BookFormat.DJVU

    def test_unsupported(self) -> None:
        assert format_for("notes.txt") is None
        assert file_extension("README") == ""


class TestExtract:
    def test_dispatches_fb2(self) -> None:
        assert extract(fb2_bytes(title="Dispatched"), "x.fb2").title == "Dispatched"

    def test_dispatches_mobi_alias(self) -> None:
        assert extract(mobi_bytes(full_name="Kindle"), "x.azw").title == "Kindle"

    def test_other_extension_uses_filename(self) -> None:
        assert extract(b"plain text", "Some Notes.txt").title == "Some Notes"

    def test_parse_error_propagates(self) -> None:
        with pytest.raises(ParseError):
            extract(b"<broken", "x.fb2")


class TestExtractOrDegrade:
    def test_corrupt_fb2_degrades_to_filename(self) -> None:
        metadata = extract_or_degrade(b"<broken", "Broken Title.fb2")
        assert metadata.title == "Broken Title"
        assert metadata.extract_error is not None
        assert "Malformed" in metadata.extract_error

    def test_archive_transparency(self) -> None:
        """Identical bytes give identical metadata wherever they came from."""
        data = fb2_bytes(title="Same", series=("Saga", 1))
        assert extract_or_degrade(data, "a.fb2") == extract_or_degrade(data, "other.fb2")

    def test_library_error_degrades_to_filename(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def encrypted(data: bytes, filename: str):
            raise RuntimeError("File 'content.opf' is encrypted, password required")

        monkeypatch.setattr("shelfindex.formats.parse_epub", encrypted)
        metadata = extract_or_degrade(b"PK", "Locked Away.epub")
        assert metadata.title == "Locked Away"
        assert metadata.extract_error is not None
        assert metadata.extract_error.startswith("RuntimeError")

    def test_overflowing_epub_series_index_still_extracts(self) -> None:
        opf = opf_document("Far Future", series=("Saga", "1e400"))
        data = epub_bytes({"content.opf": opf}, rootfiles=["content.opf"])
        metadata = extract_or_degrade(data, "x.epub")
        assert metadata.extract_error is None
        assert metadata.title == "Far Future"
        assert metadata.series_index == 0
