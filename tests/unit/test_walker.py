# ABOUTME: Unit tests for the catalog tree walker.
# ABOUTME: Verifies traversal order, archive members, INPX expansion, failures, and stop signals.

import os
import threading
import zipfile
from pathlib import Path

import pytest

from shelfindex.core.inpx import parse_inp_line
from shelfindex.core.walker import (
    BookCandidate,
    CatalogEntry,
    CatalogWalker,
    WalkFailure,
    decode_member_name,
)
from shelfindex.db.repository import CatalogKind
from shelfindex.errors import IoError
from tests.fixtures.books import fb2_bytes, inp_line, inpx_bytes, zip_bytes

EXTENSIONS = frozenset({"fb2", "epub"})


def _items(walker: CatalogWalker, root: Path, kind: type) -> list:
    return [item for item in walker.walk(root) if isinstance(item, kind)]


class TestDirectoryWalk:
    """Tests for plain directory trees."""

    def test_catalogs_and_books(self, library_root: Path) -> None:
        (library_root / "b.fb2").write_bytes(fb2_bytes())
        (library_root / "notes.txt").write_text("ignored")
        sub = library_root / "sub"
        sub.mkdir()
        (sub / "a.epub").write_bytes(b"epub")

        items = list(CatalogWalker(EXTENSIONS).walk(library_root))
        catalogs = [i for i in items if isinstance(i, CatalogEntry)]
        books = [i for i in items if isinstance(i, BookCandidate)]

        assert [c.rel_path for c in catalogs] == ["", "sub"]
        assert catalogs[0].parent_path is None
        assert catalogs[1].parent_path == str(library_root)
        assert [(b.rel_path, b.filename) for b in books] == [("", "b.fb2"), ("sub", "a.epub")]
        assert books[0].read_bytes() == fb2_bytes()
        assert books[0].size == len(fb2_bytes())

    def test_catalog_precedes_its_books(self, library_root: Path) -> None:
        sub = library_root / "deep"
        sub.mkdir()
        (sub / "x.fb2").write_bytes(b"x")
        items = list(CatalogWalker(EXTENSIONS).walk(library_root))
        index_of_catalog = next(
            i
            for i, item in enumerate(items)
            if isinstance(item, CatalogEntry) and item.name == "deep"
        )
        index_of_book = next(i for i, item in enumerate(items) if isinstance(item, BookCandidate))
        assert index_of_catalog < index_of_book

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
    def test_symlink_cycle_reported(self, library_root: Path) -> None:
        sub = library_root / "sub"
        sub.mkdir()
        (sub / "loop").symlink_to(library_root, target_is_directory=True)
        failures = _items(CatalogWalker(EXTENSIONS), library_root, WalkFailure)
        assert len(failures) == 1
        assert "already visited" in str(failures[0].error)

    def test_stop_event_halts_walk(self, library_root: Path) -> None:
        for i in range(5):
            (library_root / f"{i}.fb2").write_bytes(b"x")
        stop = threading.Event()
        walker = CatalogWalker(EXTENSIONS, stop_event=stop)
        seen = []
        for item in walker.walk(library_root):
            if isinstance(item, BookCandidate):
                seen.append(item)
                stop.set()
        assert len(seen) == 1


class TestZipWalk:
    """Tests for books inside ZIP archives."""

    def test_zip_members(self, library_root: Path) -> None:
        (library_root / "pack.zip").write_bytes(
            zip_bytes({"one.fb2": b"1", "nested/two.epub": b"2", "skip.txt": b"t"})
        )
        items = list(CatalogWalker(EXTENSIONS).walk(library_root))
        archive = next(
            i for i in items if isinstance(i, CatalogEntry) and i.kind == CatalogKind.ZIP
        )
        books = [i for i in items if isinstance(i, BookCandidate)]

        assert archive.rel_path == "pack.zip"
        assert archive.parent_path == str(library_root)
        assert [b.filename for b in books] == ["one.fb2", "nested/two.epub"]
        assert all(b.container_kind == CatalogKind.ZIP for b in books)
        assert all(b.rel_path == "pack.zip" for b in books)
        assert books[1].read_bytes() == b"2"

    def test_zip_disabled(self, library_root: Path) -> None:
        (library_root / "pack.zip").write_bytes(zip_bytes({"one.fb2": b"1"}))
        walker = CatalogWalker(EXTENSIONS, scan_zip=False)
        assert _items(walker, library_root, BookCandidate) == []

    def test_corrupt_zip_is_a_failure(self, library_root: Path) -> None:
        (library_root / "bad.zip").write_bytes(b"PK\x03\x04 truncated")
        failures = _items(CatalogWalker(EXTENSIONS), library_root, WalkFailure)
        assert len(failures) == 1
        assert failures[0].catalog_path == str(library_root / "bad.zip")

    def test_unchanged_zip_skipped(self, library_root: Path) -> None:
        (library_root / "pack.zip").write_bytes(zip_bytes({"one.fb2": b"1"}))
        walker = CatalogWalker(EXTENSIONS, is_unchanged=lambda entry: True)
        items = list(walker.walk(library_root))
        archive = next(
            i for i in items if isinstance(i, CatalogEntry) and i.kind == CatalogKind.ZIP
        )
        assert archive.skipped
        assert not any(isinstance(i, BookCandidate) for i in items)

    def test_member_name_codepage(self) -> None:
        info = zipfile.ZipInfo("Книга.fb2".encode("cp866").decode("cp437"))
        assert decode_member_name(info, "cp866") == "Книга.fb2"

    def test_utf8_flagged_name_untouched(self) -> None:
        info = zipfile.ZipInfo("Книга.fb2")
        info.flag_bits |= 0x800
        assert decode_member_name(info, "cp866") == "Книга.fb2"


class TestInpxWalk:
    """Tests for INPX-indexed collections."""

    def test_books_come_from_the_index(self, library_root: Path) -> None:
        (library_root / "lib.inpx").write_bytes(
            inpx_bytes(
                {"fb2-1.inp": inp_line("Doe,Jane,:", "sf:", "Indexed", "100", 3)
                 + inp_line("Doe,Jane,:", "sf:", "Other Format", "101", 3, ext="pdf")}
            )
        )
        (library_root / "fb2-1.zip").write_bytes(zip_bytes({"100.fb2": b"abc"}))
        (library_root / "loose.fb2").write_bytes(b"not scanned")

        items = list(CatalogWalker(EXTENSIONS).walk(library_root))
        kinds = [i.kind for i in items if isinstance(i, CatalogEntry)]
        books = [i for i in items if isinstance(i, BookCandidate)]

        assert kinds == [CatalogKind.NORMAL, CatalogKind.INPX, CatalogKind.INP]
        assert len(books) == 1
        book = books[0]
        assert book.filename == "100.fb2"
        assert book.rel_path == "fb2-1.zip"
        assert book.catalog_path == f"{library_root / 'lib.inpx'}/fb2-1.inp"
        assert book.container_kind == CatalogKind.INPX
        assert book.mtime == 0.0
        assert book.metadata.title == "Indexed"
        assert book.read_bytes() == b"abc"

    def test_inpx_disabled_scans_files(self, library_root: Path) -> None:
        (library_root / "lib.inpx").write_bytes(inpx_bytes({}))
        (library_root / "loose.fb2").write_bytes(b"x")
        books = _items(CatalogWalker(EXTENSIONS, inpx_enable=False), library_root, BookCandidate)
        assert [b.filename for b in books] == ["loose.fb2"]

    def test_corrupt_index_member_is_a_failure(
        self, library_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (library_root / "lib.inpx").write_bytes(inpx_bytes({"fb2-1.inp": ""}))
        record = parse_inp_line(inp_line("Doe,Jane,:", "sf:", "Indexed", "100", 3), "fb2-1.zip")

        def truncated_member():
            yield record
            raise IoError("Cannot read fb2-1.inp from INPX archive: invalid block type")

        monkeypatch.setattr(
            "shelfindex.core.walker.read_inpx",
            lambda data: iter([("fb2-1.inp", truncated_member())]),
        )
        items = list(CatalogWalker(EXTENSIONS).walk(library_root))
        books = [i for i in items if isinstance(i, BookCandidate)]
        failures = [i for i in items if isinstance(i, WalkFailure)]

        assert [b.filename for b in books] == ["100.fb2"]
        assert len(failures) == 1
        assert failures[0].catalog_path == f"{library_root / 'lib.inpx'}/fb2-1.inp"
