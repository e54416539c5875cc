# ABOUTME: SQLite implementation of the CatalogRepository protocol.
# ABOUTME: Per-thread connections, BEGIN IMMEDIATE transactions, insert-then-reselect dedup.

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from shelfindex.db.connection import connect, open_library
from shelfindex.db.mapping import fields_to_row, row_to_book, row_to_catalog
from shelfindex.db.repository import (
    COUNTER_ALL_AUTHORS,
    COUNTER_ALL_BOOKS,
    COUNTER_ALL_CATALOGS,
    COUNTER_ALL_GENRES,
    COUNTER_ALL_SERIES,
    Availability,
    BookFields,
    BookKey,
    BookRecord,
    CatalogKind,
    CatalogRecord,
)
from shelfindex.errors import DuplicateKeyConflict, PersistenceError
from shelfindex.metadata.normalizer import detect_language_class, search_key

logger = logging.getLogger(__name__)

# A conflicting insert followed by a lookup can still miss if a concurrent
# maintenance run deleted the row in between; retry the pair this many times.
_NAME_UPSERT_ATTEMPTS = 3

# Keep IN (...) lists well below SQLITE_MAX_VARIABLE_NUMBER.
_CHUNK = 500

_SUBTREE_CTE = (
    "WITH RECURSIVE subtree(id) AS ("
    " SELECT ? UNION ALL"
    " SELECT c.id FROM catalogs c JOIN subtree s ON c.parent_id = s.id"
    ") "
)

_BOOK_UPDATE_COLUMNS = (
    "format",
    "title",
    "search_title",
    "annotation",
    "docdate",
    "lang",
    "lang_class",
    "size",
    "mtime",
    "avail",
    "cat_type",
    "cover",
    "cover_type",
    "extract_error",
)


def _chunks(items: list[Any]) -> Iterator[list[Any]]:
    for start in range(0, len(items), _CHUNK):
        yield items[start : start + _CHUNK]


class SqliteRepository:
    """CatalogRepository backed by a single SQLite database file.

    Each thread gets its own connection, opened lazily. Connections run in
    autocommit mode, so a statement outside ``transaction()`` commits on its
    own; multi-statement methods open a (possibly nested) transaction.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._local = threading.local()
        self._connections: list[tuple[threading.Thread, sqlite3.Connection]] = []
        self._connections_lock = threading.Lock()
        # Opened on the constructing thread so schema setup happens exactly once.
        try:
            conn = open_library(path)
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Cannot open database {path}: {exc}") from exc
        self._register(conn)

    @property
    def path(self) -> Path:
        return self._path

    def _register(self, conn: sqlite3.Connection) -> sqlite3.Connection:
        self._local.conn = conn
        self._local.depth = 0
        with self._connections_lock:
            self._connections.append((threading.current_thread(), conn))
        return conn

    @property
    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = self._register(connect(self._path))
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot open database {self._path}: {exc}") from exc
        return conn

    def _execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        """Run one statement, translating sqlite3 errors into the shelfindex taxonomy."""
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise DuplicateKeyConflict(str(exc)) from exc
            raise PersistenceError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block atomically.

        Uses BEGIN IMMEDIATE so concurrent writers queue on the busy timeout
        instead of failing at commit time. Nested calls join the outer
        transaction.

        Raises:
            PersistenceError: If the transaction cannot begin or commit.
        """
        conn = self._conn
        depth = self._local.depth
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth = depth
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot begin transaction: {exc}") from exc

        self._local.depth = 1
        try:
            yield
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise PersistenceError(f"Cannot commit transaction: {exc}") from exc
        finally:
            self._local.depth = 0

    def release_idle_connections(self) -> int:
        """Close the connections of threads that have exited.

        Worker pools and scan threads come and go between scans; their
        connections would otherwise stay open until close().

        Returns:
            Number of connections closed.
        """
        with self._connections_lock:
            idle = [conn for thread, conn in self._connections if not thread.is_alive()]
            self._connections = [
                (thread, conn) for thread, conn in self._connections if thread.is_alive()
            ]
        for conn in idle:
            conn.close()
        if idle:
            logger.debug("Closed %d connection(s) of finished threads", len(idle))
        return len(idle)

    def close(self) -> None:
        """Close every connection opened by this repository."""
        with self._connections_lock:
            for _thread, conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # --- Catalogs ---

    def find_catalog_by_path(self, path: str) -> CatalogRecord | None:
        row = self._execute("SELECT * FROM catalogs WHERE path = ?", (path,)).fetchone()
        return row_to_catalog(row) if row else None

    def upsert_catalog(
        self,
        path: str,
        *,
        name: str,
        kind: CatalogKind,
        parent_id: int | None,
        size: int = 0,
        mtime: float = 0.0,
    ) -> CatalogRecord:
        """Insert a catalog node or refresh the stored one at the same path.

        The stored size/mtime are overwritten, so callers comparing against
        the previous signature must read it before calling this.
        """
        with self.transaction():
            try:
                self._execute(
                    "INSERT INTO catalogs "
                    "(parent_id, path, cat_name, cat_type, cat_size, cat_mtime) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (parent_id, path, name, kind.value, size, mtime),
                )
            except DuplicateKeyConflict:
                self._execute(
                    "UPDATE catalogs SET parent_id = ?, cat_name = ?, cat_type = ?, "
                    "cat_size = ?, cat_mtime = ? WHERE path = ?",
                    (parent_id, name, kind.value, size, mtime, path),
                )
            else:
                self.increment_counter(COUNTER_ALL_CATALOGS)
            record = self.find_catalog_by_path(path)
        if record is None:
            raise PersistenceError(f"Catalog {path} vanished during upsert")
        return record

    # --- Books ---

    def get_book(self, book_id: int) -> BookRecord | None:
        row = self._execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return row_to_book(row) if row else None

    def find_book_by_path(self, catalog_id: int, path: str, filename: str) -> BookRecord | None:
        row = self._execute(
            "SELECT * FROM books WHERE catalog_id = ? AND path = ? AND filename = ?",
            (catalog_id, path, filename),
        ).fetchone()
        return row_to_book(row) if row else None

    def upsert_book(self, fields: BookFields) -> int:
        """Insert a book row or update the one at the same (catalog, path, filename).

        Returns:
            The row ID of the book.
        """
        row = fields_to_row(fields)
        columns = ", ".join(row.keys())
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _BOOK_UPDATE_COLUMNS)

        with self.transaction():
            self._execute(
                f"INSERT INTO books ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(catalog_id, path, filename) DO UPDATE SET {updates}",
                list(row.values()),
            )
            found = self._execute(
                "SELECT id FROM books WHERE catalog_id = ? AND path = ? AND filename = ?",
                (fields.catalog_id, fields.path, fields.filename),
            ).fetchone()
        if found is None:
            raise PersistenceError(f"Book {fields.path}/{fields.filename} vanished during upsert")
        return found[0]

    def set_book_availability(self, book_id: int, availability: Availability) -> None:
        self._execute("UPDATE books SET avail = ? WHERE id = ?", (availability.value, book_id))

    def set_book_cover(self, book_id: int, has_cover: bool, cover_type: str) -> None:
        self._execute(
            "UPDATE books SET cover = ?, cover_type = ? WHERE id = ?",
            (1 if has_cover else 0, cover_type, book_id),
        )

    # --- Authors and series ---

    def _find_or_create_name(
        self, table: str, name_column: str, search_column: str, name: str, counter: str
    ) -> int:
        """Insert a named row, or return the existing row's ID on a unique conflict.

        Never checks for existence first: the unique index decides, so two
        workers racing on the same name both end up with the same ID.
        """
        for _ in range(_NAME_UPSERT_ATTEMPTS):
            try:
                cursor = self._execute(
                    f"INSERT INTO {table} ({name_column}, {search_column}, lang_class) "
                    "VALUES (?, ?, ?)",
                    (name, search_key(name), detect_language_class(name).value),
                )
            except DuplicateKeyConflict:
                row = self._execute(
                    f"SELECT id FROM {table} WHERE {name_column} = ?", (name,)
                ).fetchone()
                if row is not None:
                    return row[0]
                logger.debug("%s row %r vanished after a conflict, retrying", table, name)
                continue
            self.increment_counter(counter)
            return cursor.lastrowid  # type: ignore[return-value]
        raise PersistenceError(f"Cannot resolve {table} row for {name!r}")

    def upsert_author_by_name(self, full_name: str) -> int:
        with self.transaction():
            return self._find_or_create_name(
                "authors", "full_name", "search_full_name", full_name, COUNTER_ALL_AUTHORS
            )

    def upsert_series_by_name(self, ser_name: str) -> int:
        with self.transaction():
            return self._find_or_create_name(
                "series", "ser_name", "search_ser", ser_name, COUNTER_ALL_SERIES
            )

    def replace_book_author_links(self, book_id: int, author_ids: list[int]) -> str:
        """Replace a book's author links and store the matching author_key.

        Returns:
            The author_key: sorted, comma-joined author IDs.
        """
        unique_ids = sorted(set(author_ids))
        author_key = ",".join(str(author_id) for author_id in unique_ids)
        with self.transaction():
            self._execute("DELETE FROM book_authors WHERE book_id = ?", (book_id,))
            for author_id in unique_ids:
                self._execute(
                    "INSERT INTO book_authors (book_id, author_id) VALUES (?, ?)",
                    (book_id, author_id),
                )
            self._execute("UPDATE books SET author_key = ? WHERE id = ?", (author_key, book_id))
        return author_key

    def replace_book_genre_links(self, book_id: int, codes: list[str]) -> None:
        """Replace a book's genre links. Codes missing from the taxonomy are ignored."""
        with self.transaction():
            self._execute("DELETE FROM book_genres WHERE book_id = ?", (book_id,))
            for code in codes:
                self._execute(
                    "INSERT OR IGNORE INTO book_genres (book_id, genre_id) "
                    "SELECT ?, id FROM genres WHERE code = ?",
                    (book_id, code),
                )

    def replace_book_series_links(self, book_id: int, links: list[tuple[int, int]]) -> None:
        with self.transaction():
            self._execute("DELETE FROM book_series WHERE book_id = ?", (book_id,))
            for series_id, ser_no in links:
                self._execute(
                    "INSERT OR IGNORE INTO book_series (book_id, series_id, ser_no) "
                    "VALUES (?, ?, ?)",
                    (book_id, series_id, ser_no),
                )

    def get_book_author_names(self, book_id: int) -> list[str]:
        cursor = self._execute(
            "SELECT a.full_name FROM authors a "
            "JOIN book_authors ba ON ba.author_id = a.id "
            "WHERE ba.book_id = ? ORDER BY a.id",
            (book_id,),
        )
        return [row[0] for row in cursor.fetchall()]

    def get_book_genre_codes(self, book_id: int) -> list[str]:
        cursor = self._execute(
            "SELECT g.code FROM genres g "
            "JOIN book_genres bg ON bg.genre_id = g.id "
            "WHERE bg.book_id = ? ORDER BY g.code",
            (book_id,),
        )
        return [row[0] for row in cursor.fetchall()]

    def get_book_series(self, book_id: int) -> list[tuple[str, int]]:
        cursor = self._execute(
            "SELECT s.ser_name, bs.ser_no FROM series s "
            "JOIN book_series bs ON bs.series_id = s.id "
            "WHERE bs.book_id = ? ORDER BY s.ser_name",
            (book_id,),
        )
        return [(row[0], row[1]) for row in cursor.fetchall()]

    # --- Counters ---

    def increment_counter(self, name: str, delta: int = 1) -> None:
        """Adjust a named counter, clamping at zero.

        Raises:
            ValueError: If the counter does not exist.
        """
        cursor = self._execute(
            "UPDATE counters SET value = MAX(value + ?, 0), "
            "updated_at = strftime('%Y-%m-%dT%H:%M:%S', 'now') WHERE name = ?",
            (delta, name),
        )
        if cursor.rowcount == 0:
            raise ValueError(f"Counter '{name}' not found")

    def get_counters(self) -> dict[str, int]:
        cursor = self._execute("SELECT name, value FROM counters ORDER BY name")
        return {row["name"]: row["value"] for row in cursor.fetchall()}

    def refresh_counters(self) -> dict[str, int]:
        """Recompute every counter from the tables and return the new values."""
        queries = {
            COUNTER_ALL_BOOKS: "SELECT COUNT(*) FROM books WHERE avail != 'deleted'",
            COUNTER_ALL_CATALOGS: "SELECT COUNT(*) FROM catalogs",
            COUNTER_ALL_AUTHORS: "SELECT COUNT(*) FROM authors",
            COUNTER_ALL_GENRES: "SELECT COUNT(DISTINCT genre_id) FROM book_genres",
            COUNTER_ALL_SERIES: "SELECT COUNT(*) FROM series",
        }
        with self.transaction():
            for name, query in queries.items():
                value = self._execute(query).fetchone()[0]
                self._execute(
                    "UPDATE counters SET value = ?, "
                    "updated_at = strftime('%Y-%m-%dT%H:%M:%S', 'now') WHERE name = ?",
                    (value, name),
                )
        return self.get_counters()

    def availability_breakdown(self) -> dict[str, int]:
        """Count books per availability state."""
        counts = {state.value: 0 for state in Availability}
        cursor = self._execute("SELECT avail, COUNT(*) FROM books GROUP BY avail")
        for row in cursor.fetchall():
            counts[row[0]] = row[1]
        return counts

    # --- Subtree operations ---

    def list_book_keys(self, catalog_id: int) -> set[BookKey]:
        """Return (path, filename) of every book stored under a catalog subtree."""
        cursor = self._execute(
            _SUBTREE_CTE + "SELECT path, filename FROM books "
            "WHERE catalog_id IN (SELECT id FROM subtree)",
            (catalog_id,),
        )
        return {(row[0], row[1]) for row in cursor.fetchall()}

    def confirm_books_under(self, catalog_id: int) -> int:
        """Promote every unverified book under a catalog subtree to confirmed."""
        cursor = self._execute(
            _SUBTREE_CTE + "UPDATE books SET avail = 'confirmed' "
            "WHERE avail = 'unverified' AND catalog_id IN (SELECT id FROM subtree)",
            (catalog_id,),
        )
        return cursor.rowcount

    def mark_unseen_books_deleted(self, catalog_id: int, seen: set[BookKey]) -> int:
        """Soft-delete books under a catalog subtree whose key is not in ``seen``.

        Returns:
            The number of books newly marked deleted.
        """
        with self.transaction():
            cursor = self._execute(
                _SUBTREE_CTE + "SELECT id, path, filename FROM books "
                "WHERE avail != 'deleted' AND catalog_id IN (SELECT id FROM subtree)",
                (catalog_id,),
            )
            missing = [row[0] for row in cursor.fetchall() if (row[1], row[2]) not in seen]
            for chunk in _chunks(missing):
                placeholders = ", ".join("?" for _ in chunk)
                self._execute(
                    f"UPDATE books SET avail = 'deleted' WHERE id IN ({placeholders})", chunk
                )
            if missing:
                self.increment_counter(COUNTER_ALL_BOOKS, -len(missing))
        return len(missing)

    # --- Maintenance ---

    def _recompute_author_keys(self) -> None:
        self._execute(
            "UPDATE books SET author_key = COALESCE(("
            " SELECT group_concat(author_id, ',') FROM ("
            "  SELECT author_id FROM book_authors WHERE book_id = books.id ORDER BY author_id"
            " )"
            "), '')"
        )

    def _merge_duplicates(
        self, table: str, name_column: str, link_table: str, link_column: str
    ) -> int:
        """Collapse rows sharing a name onto the lowest ID, relinking junction rows."""
        removed = 0
        with self.transaction():
            groups = self._execute(
                f"SELECT {name_column}, MIN(id) FROM {table} "
                f"GROUP BY {name_column} HAVING COUNT(*) > 1"
            ).fetchall()
            for name, keep_id in groups:
                duplicates = f"SELECT id FROM {table} WHERE {name_column} = ? AND id != ?"
                self._execute(
                    f"UPDATE OR IGNORE {link_table} SET {link_column} = ? "
                    f"WHERE {link_column} IN ({duplicates})",
                    (keep_id, name, keep_id),
                )
                # Rows left behind were already linked to the survivor.
                self._execute(
                    f"DELETE FROM {link_table} WHERE {link_column} IN ({duplicates})",
                    (name, keep_id),
                )
                cursor = self._execute(
                    f"DELETE FROM {table} WHERE {name_column} = ? AND id != ?", (name, keep_id)
                )
                removed += cursor.rowcount
                logger.info("Merged %d duplicate %s rows named %r", cursor.rowcount, table, name)
            self._execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_name_unique "
                f"ON {table}({name_column})"
            )
        return removed

    def merge_duplicate_authors(self) -> int:
        """Merge authors sharing a full_name and rebuild every book's author_key.

        Returns:
            The number of author rows removed.
        """
        with self.transaction():
            removed = self._merge_duplicates("authors", "full_name", "book_authors", "author_id")
            self._recompute_author_keys()
        return removed

    def merge_duplicate_series(self) -> int:
        """Merge series sharing a ser_name.

        Returns:
            The number of series rows removed.
        """
        return self._merge_duplicates("series", "ser_name", "book_series", "series_id")
