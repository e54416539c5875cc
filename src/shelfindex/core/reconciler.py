# ABOUTME: Reconciler: merges one discovered book into the catalog in a single transaction.
# ABOUTME: Decides Inserted/Updated/Unchanged by (size, mtime) and links authors, genres, series.

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from shelfindex.core.walker import BookCandidate
from shelfindex.db.repository import (
    COUNTER_ALL_BOOKS,
    Availability,
    BookFields,
    BookKey,
    BookRecord,
    CatalogRepository,
)
from shelfindex.errors import PersistenceError
from shelfindex.formats import file_extension
from shelfindex.formats.covers import CoverStore
from shelfindex.metadata.normalizer import (
    UNKNOWN_AUTHOR,
    detect_language_class,
    normalize_author_name,
    search_key,
    strip_meta,
)
from shelfindex.metadata.types import BookMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")

Extractor = Callable[[bytes, str], BookMetadata]


class Outcome(StrEnum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    book_id: int | None = None
    extract_error: str | None = None
    count: int = 1


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def author_names(metadata: BookMetadata) -> list[str]:
    """Normalized, deduplicated author names; ``Unknown`` when none survive."""
    names = _unique([normalize_author_name(a) for a in metadata.authors])
    return names or [UNKNOWN_AUTHOR]


class Reconciler:
    """Writes extraction results into a CatalogRepository.

    Safe to share between worker threads: all shared state lives in the
    repository, and each book is written in its own transaction.
    """

    def __init__(
        self,
        repository: CatalogRepository,
        extractor: Extractor,
        *,
        covers: CoverStore | None = None,
        retries: int = 3,
        retry_delay: float = 0.05,
    ) -> None:
        self.repository = repository
        self.extractor = extractor
        self.covers = covers
        self.retries = retries
        self.retry_delay = retry_delay

    def with_retries(self, operation: Callable[[], T], what: str) -> T:
        """Run ``operation``, retrying on PersistenceError with linear backoff."""
        attempt = 0
        while True:
            try:
                return operation()
            except PersistenceError as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.debug("Retrying %s (attempt %d): %s", what, attempt, exc)
                time.sleep(self.retry_delay * attempt)

    def reconcile(
        self,
        catalog_id: int,
        candidate: BookCandidate,
        metadata: BookMetadata | None = None,
    ) -> ReconcileResult:
        """Bring the catalog row for ``candidate`` in line with the file on disk.

        Metadata is only extracted (from ``metadata``, the candidate's INPX
        metadata, or by reading the bytes) when the row is new or its
        signature changed.

        Raises:
            IoError: If the book's bytes cannot be read.
            PersistenceError: If the write still fails after all retries.
        """
        existing = self.with_retries(
            lambda: self.repository.find_book_by_path(
                catalog_id, candidate.rel_path, candidate.filename
            ),
            f"lookup of {candidate.display_path}",
        )
        if existing is not None and existing.signature == (candidate.size, candidate.mtime):
            return self.with_retries(
                lambda: self._confirm(existing), f"confirm of {candidate.display_path}"
            )

        if metadata is None:
            metadata = candidate.metadata
        if metadata is None:
            metadata = self.extractor(candidate.read_bytes(), candidate.filename)

        result = self.with_retries(
            lambda: self._write(catalog_id, candidate, metadata),
            f"write of {candidate.display_path}",
        )
        if metadata.has_cover and result.book_id is not None:
            self._save_cover(result.book_id, metadata)
        return result

    def _confirm(self, book: BookRecord) -> ReconcileResult:
        """Same signature as stored: promote availability, no metadata rewrite."""
        if book.availability == Availability.CONFIRMED:
            return ReconcileResult(Outcome.UNCHANGED, book.id)
        if book.availability == Availability.UNVERIFIED:
            self.repository.set_book_availability(book.id, Availability.CONFIRMED)
            return ReconcileResult(Outcome.UNCHANGED, book.id)

        with self.repository.transaction():
            self.repository.set_book_availability(book.id, Availability.UNVERIFIED)
            self.repository.increment_counter(COUNTER_ALL_BOOKS)
        logger.info("Book %s reappeared", book.filename)
        return ReconcileResult(Outcome.UPDATED, book.id)

    def _write(
        self, catalog_id: int, candidate: BookCandidate, metadata: BookMetadata
    ) -> ReconcileResult:
        repo = self.repository
        title = strip_meta(metadata.title) or candidate.filename
        fields = BookFields(
            catalog_id=catalog_id,
            filename=candidate.filename,
            path=candidate.rel_path,
            format=file_extension(candidate.filename),
            title=title,
            search_title=search_key(title),
            size=candidate.size,
            mtime=candidate.mtime,
            availability=Availability.UNVERIFIED,
            container_kind=candidate.container_kind,
            annotation=metadata.annotation,
            docdate=metadata.docdate,
            language=metadata.language or "un",
            lang_class=detect_language_class(title).value,
            has_cover=metadata.has_cover,
            cover_type=metadata.cover_type,
            extract_error=metadata.extract_error,
        )

        with repo.transaction():
            current = repo.find_book_by_path(catalog_id, candidate.rel_path, candidate.filename)
            if current is None:
                outcome = Outcome.INSERTED
                books_delta = 1
            else:
                outcome = Outcome.UPDATED
                if current.availability == Availability.DELETED:
                    books_delta = 1
                else:
                    fields.availability = Availability.CONFIRMED
                    books_delta = 0

            book_id = repo.upsert_book(fields)
            if books_delta:
                repo.increment_counter(COUNTER_ALL_BOOKS, books_delta)

            author_ids = [repo.upsert_author_by_name(name) for name in author_names(metadata)]
            repo.replace_book_author_links(book_id, author_ids)
            repo.replace_book_genre_links(
                book_id, _unique([g.strip().lower() for g in metadata.genres])
            )
            series_links = []
            series = strip_meta(metadata.series or "")
            if series:
                series_links.append((repo.upsert_series_by_name(series), metadata.series_index))
            repo.replace_book_series_links(book_id, series_links)

        logger.debug("%s %s (id %d)", outcome.value.capitalize(), candidate.display_path, book_id)
        return ReconcileResult(outcome, book_id, metadata.extract_error)

    def _save_cover(self, book_id: int, metadata: BookMetadata) -> None:
        if self.covers is None or metadata.cover_image is None:
            return
        try:
            _, mime = self.covers.save(book_id, metadata.cover_image)
        except OSError as exc:
            logger.warning("Cannot save cover for book %d: %s", book_id, exc)
            self.with_retries(
                lambda: self.repository.set_book_cover(book_id, False, ""),
                f"cover flag of book {book_id}",
            )
            return
        if mime != metadata.cover_type:
            self.with_retries(
                lambda: self.repository.set_book_cover(book_id, True, mime),
                f"cover type of book {book_id}",
            )

    def mark_missing(self, root_catalog_id: int, seen: set[BookKey]) -> ReconcileResult:
        """Soft-delete books under a root that the completed walk did not see."""
        deleted = self.with_retries(
            lambda: self.repository.mark_unseen_books_deleted(root_catalog_id, seen),
            f"deletion sweep of catalog {root_catalog_id}",
        )
        if deleted:
            logger.info("Marked %d missing books deleted", deleted)
        return ReconcileResult(Outcome.DELETED, count=deleted)
