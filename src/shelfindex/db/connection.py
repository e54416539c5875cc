# ABOUTME: SQLite connection setup for the shelfindex catalog database.
# ABOUTME: Configures pragmas per connection and brings a database file up to the latest schema.

import logging
import sqlite3
from pathlib import Path

from shelfindex.db.schema import MIGRATIONS, SCHEMA_V1

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".shelfindex" / "library.db"

# Milliseconds a connection waits on a locked database before failing.
BUSY_TIMEOUT_MS = 30_000


def schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied schema version, or 0 for an empty database."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if has_table is None:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def connect(path: Path) -> sqlite3.Connection:
    """Open a configured connection to an existing or new database file.

    The connection runs in autocommit mode; callers that need atomicity
    issue BEGIN/COMMIT themselves. check_same_thread is disabled so that
    the owner can close per-thread connections from the main thread.
    """
    conn = sqlite3.connect(
        str(path),
        timeout=BUSY_TIMEOUT_MS / 1000,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    for pragma in ("journal_mode=WAL", "foreign_keys=ON", f"busy_timeout={BUSY_TIMEOUT_MS}"):
        conn.execute(f"PRAGMA {pragma}")
    return conn


def _upgrade(conn: sqlite3.Connection) -> None:
    current = schema_version(conn)
    if current == 0:
        logger.info("Creating catalog schema")
        conn.executescript(SCHEMA_V1)
        current = 1
    for version, script in MIGRATIONS:
        if version <= current:
            continue
        # Every script records its own schema_version row.
        logger.info("Applying schema migration %d", version)
        conn.executescript(script)


def open_library(path: Path | None = None) -> sqlite3.Connection:
    """Open the catalog database, creating and upgrading it as needed.

    Args:
        path: Database file. Defaults to ~/.shelfindex/library.db; missing
            parent directories are created.

    Returns:
        A connection from ``connect()`` on a database at the latest version.
    """
    db_path = path or DEFAULT_DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path)
    try:
        _upgrade(conn)
    except sqlite3.Error:
        conn.close()
        raise
    return conn
