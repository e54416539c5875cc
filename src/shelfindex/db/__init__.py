# ABOUTME: Public API for the shelfindex catalog database layer.
# ABOUTME: Exports connection management, the repository protocol, and the SQLite implementation.

from shelfindex.db.connection import DEFAULT_DB_PATH, open_library
from shelfindex.db.repository import (
    Availability,
    BookFields,
    BookKey,
    BookRecord,
    CatalogKind,
    CatalogRecord,
    CatalogRepository,
)
from shelfindex.db.sqlite import SqliteRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "Availability",
    "BookFields",
    "BookKey",
    "BookRecord",
    "CatalogKind",
    "CatalogRecord",
    "CatalogRepository",
    "SqliteRepository",
    "open_library",
]
