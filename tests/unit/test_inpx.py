# ABOUTME: Unit tests for INPX index parsing.
# ABOUTME: Checks field mapping, author formatting, skipped records, and corrupt archives.

import pytest

from shelfindex.core.inpx import folder_for, parse_inp_line, read_inpx
from shelfindex.errors import IoError
from tests.fixtures.books import inp_line, inpx_bytes


class TestParseInpLine:
    """Tests for a single .inp record."""

    def test_fields(self) -> None:
        line = inp_line(
            "Doe,Jane,Ann:Smith,John,:",
            "sf_fantasy:sf_space:",
            "Star Road",
            "101",
            2048,
            series="Roads",
            serno="3",
        )
        record = parse_inp_line(line, "fb2-000001.zip")
        assert record is not None
        assert record.filename == "101.fb2"
        assert record.format == "fb2"
        assert record.size == 2048
        assert record.folder == "fb2-000001.zip"
        metadata = record.metadata
        assert metadata.title == "Star Road"
        assert metadata.authors == ["Doe, Jane Ann", "Smith, John"]
        assert metadata.genres == ["sf_fantasy", "sf_space"]
        assert metadata.series == "Roads"
        assert metadata.series_index == 3
        assert metadata.language == "ru"
        assert metadata.docdate == "2020-01-01"

    def test_deleted_record_skipped(self) -> None:
        line = inp_line("Doe,Jane,:", "sf:", "Gone", "102", 10, deleted="1")
        assert parse_inp_line(line, "f.zip") is None

    def test_short_record_skipped(self) -> None:
        assert parse_inp_line("Doe\x04sf\x04Title\r\n", "f.zip") is None

    def test_missing_series_has_no_index(self) -> None:
        record = parse_inp_line(inp_line("A,B,:", "sf:", "T", "1", 1, serno="5"), "f.zip")
        assert record.metadata.series is None
        assert record.metadata.series_index == 0


class TestReadInpx:
    def test_folder_for(self) -> None:
        assert folder_for("fb2-000001-000100.inp") == "fb2-000001-000100.zip"

    def test_reads_every_inp_member(self) -> None:
        data = inpx_bytes(
            {
                "a.inp": inp_line("X,Y,:", "sf:", "One", "1", 5) + "\r\n",
                "b.inp": inp_line("X,Y,:", "sf:", "Two", "2", 6)
                + inp_line("X,Y,:", "sf:", "Three", "3", 7),
            }
        )
        parts = [(name, list(records)) for name, records in read_inpx(data)]
        assert [name for name, _ in parts] == ["a.inp", "b.inp"]
        assert [r.metadata.title for r in parts[1][1]] == ["Two", "Three"]
        assert parts[0][1][0].folder == "a.zip"

    def test_corrupt_archive(self) -> None:
        with pytest.raises(IoError, match="Corrupt INPX"):
            read_inpx(b"not a zip")

    def test_records_are_read_on_demand(self) -> None:
        lines = "".join(inp_line("X,Y,:", "sf:", f"Book {n}", str(n), n) for n in range(1, 1001))
        parts = read_inpx(inpx_bytes({"big.inp": lines}))
        name, records = next(parts)
        assert name == "big.inp"
        assert not isinstance(records, list)
        assert next(records).metadata.title == "Book 1"
        assert sum(1 for _ in records) == 999

    def test_corrupt_member_raises_while_reading(self) -> None:
        data = bytearray(inpx_bytes({"a.inp": inp_line("X,Y,:", "sf:", "One", "1", 5) * 200}))
        # Flip bytes inside the deflate stream of the member, past its local header.
        start = data.index(b"a.inp") + len("a.inp")
        for offset in range(start + 10, start + 40):
            data[offset] ^= 0xFF
        _, records = next(read_inpx(bytes(data)))
        with pytest.raises(IoError, match="a.inp"):
            list(records)
