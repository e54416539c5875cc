# ABOUTME: Shared pytest fixtures for shelfindex tests.
# ABOUTME: Library roots with sample books, configs pointing into tmp_path, and repositories.

from pathlib import Path

import pytest
from ebooklib import epub

from shelfindex.config import AppConfig, CoversConfig, DatabaseConfig, LibraryConfig, ScannerConfig
from shelfindex.db.sqlite import SqliteRepository
from tests.fixtures.books import fb2_bytes, png_bytes


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    """An empty library root directory."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "db" / "catalog.db"


@pytest.fixture
def repository(db_path: Path):
    """A SqliteRepository on a fresh database, closed after the test."""
    repo = SqliteRepository(db_path)
    yield repo
    repo.close()


@pytest.fixture
def make_config(tmp_path: Path, db_path: Path):
    """Factory for an AppConfig scanning the given roots, with covers and DB under tmp_path."""

    def _make(*roots: Path, scanner: ScannerConfig | None = None, **library_options) -> AppConfig:
        return AppConfig(
            library=LibraryConfig(roots=tuple(roots), **library_options),
            scanner=scanner or ScannerConfig(),
            covers=CoversConfig(covers_path=tmp_path / "covers"),
            database=DatabaseConfig(path=db_path),
        )

    return _make


@pytest.fixture
def sample_fb2(library_root: Path) -> Path:
    """One FB2 book titled "Test" by "A. Author" in genre sf_fantasy."""
    path = library_root / "test.fb2"
    path.write_bytes(fb2_bytes())
    return path


@pytest.fixture
def sample_epub(tmp_path: Path) -> Path:
    """An EPUB written by ebooklib: cover image, one subject, two creators."""
    book = epub.EpubBook()
    book.set_identifier("urn:uuid:5f0c1e4a-roadside-picnic")
    book.set_title("Roadside Picnic")
    book.set_language("en")
    book.add_author("Arkady Strugatsky")
    book.add_author("Boris Strugatsky")
    book.add_metadata("DC", "subject", "sf_social")
    book.add_metadata("DC", "description", "Stalkers bring strange artifacts out of the Zone.")
    book.set_cover("cover.png", png_bytes(30, 45, "navy"))

    zone = epub.EpubHtml(title="The Zone", file_name="zone.xhtml", lang="en")
    zone.content = b"<html><body><p>Redrick Schuhart goes into the Zone.</p></body></html>"
    book.add_item(zone)
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.toc = [epub.Link("zone.xhtml", "The Zone", "zone")]
    book.spine = ["nav", zone]

    path = tmp_path / "roadside_picnic.epub"
    epub.write_epub(str(path), book)
    return path


@pytest.fixture
def corrupt_fb2(library_root: Path) -> Path:
    """An FB2 file whose XML is not well-formed."""
    path = library_root / "Broken Title.fb2"
    path.write_bytes(b"<?xml version='1.0'?><FictionBook><description><title-info>")
    return path
