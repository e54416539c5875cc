# ABOUTME: CatalogRepository protocol and the record types it exchanges with the scanner.
# ABOUTME: Any storage backend implements this contract; the engine only sees these types.

from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable


class CatalogKind(StrEnum):
    """What a catalog node is on disk."""

    NORMAL = "normal"
    ZIP = "zip"
    INPX = "inpx"
    INP = "inp"


class Availability(StrEnum):
    """Lifecycle state of a book row.

    New rows start UNVERIFIED. A later scan that finds the file unchanged
    promotes it to CONFIRMED; a scan that completes without seeing it marks
    it DELETED. Rows are never removed by scanning.
    """

    UNVERIFIED = "unverified"
    CONFIRMED = "confirmed"
    DELETED = "deleted"


COUNTER_ALL_BOOKS = "allbooks"
COUNTER_ALL_CATALOGS = "allcatalogs"
COUNTER_ALL_AUTHORS = "allauthors"
COUNTER_ALL_GENRES = "allgenres"
COUNTER_ALL_SERIES = "allseries"

COUNTER_NAMES = (
    COUNTER_ALL_BOOKS,
    COUNTER_ALL_CATALOGS,
    COUNTER_ALL_AUTHORS,
    COUNTER_ALL_GENRES,
    COUNTER_ALL_SERIES,
)


@dataclass(frozen=True)
class CatalogRecord:
    """A stored catalog node."""

    id: int
    parent_id: int | None
    path: str
    name: str
    kind: CatalogKind
    size: int
    mtime: float


@dataclass(frozen=True)
class BookRecord:
    """A stored book row."""

    id: int
    catalog_id: int
    filename: str
    path: str
    format: str
    title: str
    search_title: str
    annotation: str
    docdate: str
    language: str
    lang_class: str
    size: int
    mtime: float
    availability: Availability
    container_kind: CatalogKind
    has_cover: bool
    cover_type: str
    author_key: str
    extract_error: str | None
    registered_at: str

    @property
    def signature(self) -> tuple[int, float]:
        """The (size, mtime) pair used for change detection."""
        return (self.size, self.mtime)


@dataclass
class BookFields:
    """Column values written by an insert-or-update of a book row."""

    catalog_id: int
    filename: str
    path: str
    format: str
    title: str
    search_title: str
    size: int
    mtime: float
    availability: Availability
    container_kind: CatalogKind = CatalogKind.NORMAL
    annotation: str = ""
    docdate: str = ""
    language: str = "un"
    lang_class: str = "other"
    has_cover: bool = False
    cover_type: str = ""
    extract_error: str | None = None


BookKey = tuple[str, str]
"""(path, filename) identity of a book within one scan root."""


@runtime_checkable
class CatalogRepository(Protocol):
    """Persistence contract used by the scan engine.

    Implementations must be safe to call from several worker threads at
    once. Everything done inside one ``transaction()`` block commits or
    rolls back together. Backend failures surface as PersistenceError.
    """

    def transaction(self) -> AbstractContextManager[None]: ...

    def upsert_catalog(
        self,
        path: str,
        *,
        name: str,
        kind: CatalogKind,
        parent_id: int | None,
        size: int = 0,
        mtime: float = 0.0,
    ) -> CatalogRecord: ...

    def find_catalog_by_path(self, path: str) -> CatalogRecord | None: ...

    def find_book_by_path(self, catalog_id: int, path: str, filename: str) -> BookRecord | None: ...

    def get_book(self, book_id: int) -> BookRecord | None: ...

    def upsert_book(self, fields: BookFields) -> int: ...

    def set_book_availability(self, book_id: int, availability: Availability) -> None: ...

    def set_book_cover(self, book_id: int, has_cover: bool, cover_type: str) -> None: ...

    def upsert_author_by_name(self, full_name: str) -> int: ...

    def upsert_series_by_name(self, ser_name: str) -> int: ...

    def replace_book_author_links(self, book_id: int, author_ids: list[int]) -> str: ...

    def replace_book_genre_links(self, book_id: int, codes: list[str]) -> None: ...

    def replace_book_series_links(self, book_id: int, links: list[tuple[int, int]]) -> None: ...

    def get_book_author_names(self, book_id: int) -> list[str]: ...

    def get_book_genre_codes(self, book_id: int) -> list[str]: ...

    def get_book_series(self, book_id: int) -> list[tuple[str, int]]: ...

    def increment_counter(self, name: str, delta: int = 1) -> None: ...

    def get_counters(self) -> dict[str, int]: ...

    def refresh_counters(self) -> dict[str, int]: ...

    def list_book_keys(self, catalog_id: int) -> set[BookKey]: ...

    def confirm_books_under(self, catalog_id: int) -> int: ...

    def mark_unseen_books_deleted(self, catalog_id: int, seen: set[BookKey]) -> int: ...

    def merge_duplicate_authors(self) -> int: ...

    def merge_duplicate_series(self) -> int: ...

    def release_idle_connections(self) -> int: ...

    def close(self) -> None: ...
