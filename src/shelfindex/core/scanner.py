# ABOUTME: Scan engine: walks each library root and reconciles books on a bounded worker pool.
# ABOUTME: Collects per-item outcomes and errors into a ScanSummary without aborting.

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from shelfindex.config import AppConfig, validate_roots
from shelfindex.core.reconciler import Extractor, Outcome, Reconciler, ReconcileResult
from shelfindex.core.walker import BookCandidate, CatalogEntry, CatalogWalker, WalkFailure
from shelfindex.db.repository import BookKey, CatalogRepository
from shelfindex.errors import PersistenceError, ShelfIndexError
from shelfindex.formats import ExternalTools, extract_or_degrade
from shelfindex.formats.covers import CoverStore

logger = logging.getLogger(__name__)

# Items submitted ahead of the workers, per worker.
_QUEUE_DEPTH = 2


@dataclass(frozen=True)
class ScanError:
    """One sampled per-item failure."""

    kind: str
    path: str
    message: str


@dataclass
class ScanSummary:
    """Outcome counts and sampled errors of one scan."""

    max_error_samples: int = 10
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    outcomes: Counter = field(default_factory=Counter)
    error_counts: Counter = field(default_factory=Counter)
    errors: list[ScanError] = field(default_factory=list)
    archives_skipped: int = 0
    cancelled: bool = False
    counters: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, result: ReconcileResult, path: str) -> None:
        with self._lock:
            self.outcomes[result.outcome] += result.count
        if result.extract_error:
            self.record_error("ParseError", path, result.extract_error)

    def record_error(self, kind: str, path: str, message: str) -> None:
        with self._lock:
            self.error_counts[kind] += 1
            if len(self.errors) < self.max_error_samples:
                self.errors.append(ScanError(kind, path, message))

    def record_failure(self) -> None:
        with self._lock:
            self.outcomes["failed"] += 1

    def count(self, outcome: Outcome | str) -> int:
        return self.outcomes[outcome]

    @property
    def inserted(self) -> int:
        return self.outcomes[Outcome.INSERTED]

    @property
    def updated(self) -> int:
        return self.outcomes[Outcome.UPDATED]

    @property
    def unchanged(self) -> int:
        return self.outcomes[Outcome.UNCHANGED]

    @property
    def deleted(self) -> int:
        return self.outcomes[Outcome.DELETED]

    @property
    def failed(self) -> int:
        return self.outcomes["failed"]

    @property
    def total_errors(self) -> int:
        return sum(self.error_counts.values())


@dataclass
class _RootState:
    root_catalog_id: int | None = None
    seen: set[BookKey] = field(default_factory=set)
    sweep_safe: bool = True


class LibraryScanner:
    """Runs full scans of the configured library roots.

    The walker runs on the calling thread; reconciliation of each book runs
    on a pool of ``workers_num`` threads. At most ``_QUEUE_DEPTH`` items per
    worker are queued, which bounds memory and open archives.
    """

    def __init__(
        self,
        config: AppConfig,
        repository: CatalogRepository,
        *,
        extractor: Extractor | None = None,
        covers: CoverStore | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        if extractor is None:
            tools = ExternalTools(config.tools, config.covers.cover_max_dimension_px)

            def extractor(data: bytes, filename: str):
                return extract_or_degrade(data, filename, tools)

        if covers is None:
            covers = CoverStore(
                config.covers.covers_path,
                max_dimension=config.covers.cover_max_dimension_px,
                quality=config.covers.cover_jpeg_quality,
            )
        self.reconciler = Reconciler(
            repository,
            extractor,
            covers=covers,
            retries=config.scanner.db_retries,
        )

    def _is_unchanged(self, entry: CatalogEntry) -> bool:
        """Whether an archive's stored size and mtime match the file on disk."""
        try:
            stored = self.repository.find_catalog_by_path(entry.path)
        except PersistenceError as exc:
            logger.debug("Cannot look up %s, rescanning it: %s", entry.path, exc)
            return False
        return (
            stored is not None
            and stored.kind == entry.kind
            and stored.size == entry.size
            and stored.mtime == entry.mtime
        )

    def scan(self, stop_event: threading.Event | None = None) -> ScanSummary:
        """Scan every configured root once.

        Persistence failures on single catalogs or books are recorded in the
        summary and the scan goes on.

        Raises:
            ConfigurationError: If a root is missing or unreadable. Nothing
                is written in that case.
        """
        library = self.config.library
        validate_roots(library.roots)

        stop = stop_event or threading.Event()
        summary = ScanSummary(max_error_samples=self.config.scanner.max_error_samples)
        walker = CatalogWalker(
            library.book_extensions,
            scan_zip=library.scan_zip,
            inpx_enable=library.inpx_enable,
            zip_codepage=library.zip_codepage,
            is_unchanged=self._is_unchanged if self.config.scanner.skip_unchanged else None,
            stop_event=stop,
        )

        workers = self.config.scanner.workers_num
        logger.info("Scan started: %d root(s), %d worker(s)", len(library.roots), workers)
        slots = threading.BoundedSemaphore(workers * _QUEUE_DEPTH)
        pending: set[Future] = set()
        pending_lock = threading.Lock()
        roots: list[_RootState] = []

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shelfindex") as pool:
            for root in library.roots:
                if stop.is_set():
                    break
                state = _RootState()
                roots.append(state)
                self._walk_root(walker, root, state, summary, pool, slots, pending, pending_lock)
            with pending_lock:
                outstanding = set(pending)
            wait(outstanding)

        if stop.is_set():
            summary.cancelled = True
            logger.info("Scan cancelled; missing books were not swept")
        else:
            for state in roots:
                if state.root_catalog_id is None or not state.sweep_safe:
                    continue
                try:
                    result = self.reconciler.mark_missing(state.root_catalog_id, state.seen)
                except PersistenceError as exc:
                    summary.record_error("PersistenceError", "<sweep>", str(exc))
                    continue
                summary.record(result, "<sweep>")

        try:
            summary.counters = self.repository.refresh_counters()
        except PersistenceError as exc:
            summary.record_error("PersistenceError", "<counters>", str(exc))
        self.repository.release_idle_connections()
        summary.finished_at = datetime.now()
        logger.info(
            "Scan finished: %d inserted, %d updated, %d unchanged, %d deleted, %d failed",
            summary.inserted,
            summary.updated,
            summary.unchanged,
            summary.deleted,
            summary.failed,
        )
        return summary

    def _walk_root(
        self,
        walker: CatalogWalker,
        root: Path,
        state: _RootState,
        summary: ScanSummary,
        pool: ThreadPoolExecutor,
        slots: threading.BoundedSemaphore,
        pending: set[Future],
        pending_lock: threading.Lock,
    ) -> None:
        catalog_ids: dict[str, int] = {}
        unstored: set[str] = set()

        for item in walker.walk(root):
            if isinstance(item, CatalogEntry):
                if item.parent_path in unstored:
                    unstored.add(item.path)
                    continue
                try:
                    self._enter_catalog(item, catalog_ids, state, summary)
                except PersistenceError as exc:
                    logger.warning("Cannot store catalog %s: %s", item.path, exc)
                    summary.record_error("PersistenceError", item.path, str(exc))
                    unstored.add(item.path)
                    self._protect(
                        WalkFailure(item.path, exc, catalog_path=item.path), catalog_ids, state
                    )

            elif isinstance(item, WalkFailure):
                logger.warning("Cannot read %s: %s", item.path, item.error)
                summary.record_error(type(item.error).__name__, item.path, str(item.error))
                self._protect(item, catalog_ids, state)

            elif isinstance(item, BookCandidate):
                state.seen.add(item.key)
                if item.catalog_path in unstored:
                    continue
                catalog_id = catalog_ids.get(item.catalog_path)
                if catalog_id is None:
                    summary.record_error("IoError", item.display_path, "catalog was not stored")
                    summary.record_failure()
                    continue
                slots.acquire()
                future = pool.submit(self.reconciler.reconcile, catalog_id, item)
                with pending_lock:
                    pending.add(future)
                future.add_done_callback(
                    lambda f, item=item: self._collect(
                        f, item, summary, slots, pending, pending_lock
                    )
                )

    def _enter_catalog(
        self,
        entry: CatalogEntry,
        catalog_ids: dict[str, int],
        state: _RootState,
        summary: ScanSummary,
    ) -> None:
        catalog_id = self._store_catalog(entry, catalog_ids)
        if entry.parent_path is None:
            state.root_catalog_id = catalog_id
        if entry.skipped:
            summary.archives_skipped += 1
            state.seen |= self.repository.list_book_keys(catalog_id)
            confirmed = self.repository.confirm_books_under(catalog_id)
            logger.debug("Confirmed %d books in unchanged %s", confirmed, entry.path)

    def _store_catalog(self, entry: CatalogEntry, catalog_ids: dict[str, int]) -> int:
        parent_id = catalog_ids.get(entry.parent_path) if entry.parent_path else None
        record = self.reconciler.with_retries(
            lambda: self.repository.upsert_catalog(
                entry.path,
                name=entry.name,
                kind=entry.kind,
                parent_id=parent_id,
                size=entry.size,
                mtime=entry.mtime,
            ),
            f"catalog {entry.path}",
        )
        catalog_ids[entry.path] = record.id
        return record.id

    def _protect(
        self, failure: WalkFailure, catalog_ids: dict[str, int], state: _RootState
    ) -> None:
        """Keep books under an unreadable container (or an unreadable file) out of the sweep.

        When the stored books cannot be listed, the sweep of the whole root is
        skipped instead.
        """
        if failure.book_key is not None:
            state.seen.add(failure.book_key)
        if failure.catalog_path is None:
            return
        try:
            catalog_id = catalog_ids.get(failure.catalog_path)
            if catalog_id is None:
                stored = self.repository.find_catalog_by_path(failure.catalog_path)
                catalog_id = stored.id if stored else None
            if catalog_id is not None:
                state.seen |= self.repository.list_book_keys(catalog_id)
        except PersistenceError as exc:
            logger.warning(
                "Cannot list books under %s, not sweeping: %s", failure.catalog_path, exc
            )
            state.sweep_safe = False

    @staticmethod
    def _collect(
        future: Future,
        item: BookCandidate,
        summary: ScanSummary,
        slots: threading.BoundedSemaphore,
        pending: set[Future],
        pending_lock: threading.Lock,
    ) -> None:
        try:
            exc = future.exception()
            if exc is None:
                summary.record(future.result(), item.display_path)
            elif isinstance(exc, ShelfIndexError):
                logger.warning("Failed to index %s: %s", item.display_path, exc)
                summary.record_error(type(exc).__name__, item.display_path, str(exc))
                summary.record_failure()
            else:
                logger.error("Unexpected error indexing %s", item.display_path, exc_info=exc)
                summary.record_error(type(exc).__name__, item.display_path, str(exc))
                summary.record_failure()
        finally:
            with pending_lock:
                pending.discard(future)
            slots.release()


def scan_library(
    config: AppConfig,
    repository: CatalogRepository,
    stop_event: threading.Event | None = None,
) -> ScanSummary:
    """Convenience wrapper: one full scan with default extractors and cover store."""
    return LibraryScanner(config, repository).scan(stop_event)

