"""SQLite connection management.

Provides thread-local connection caching for ``connection_context()`` so
repeated store calls inside one thread reuse a single configured
connection.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path

from docmine import paths as _paths
from docmine.lib.log import get_logger
from docmine.storage.schema import _ensure_schema

logger = get_logger(__name__)

# Seconds to wait on a locked database before giving up.
DB_TIMEOUT = 30

_connection_cache: threading.local = threading.local()


def _get_cached_connection(path: Path) -> sqlite3.Connection:
    """Return a thread-local cached connection for the given path.

    Connections are configured with WAL, foreign keys, busy_timeout and the
    schema exactly once per (thread, path) pair.
    """
    cache: dict[str, sqlite3.Connection] = getattr(_connection_cache, "conns", {})
    if not hasattr(_connection_cache, "conns"):
        _connection_cache.conns = cache

    key = str(path)
    if key in cache:
        return cache[key]

    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=DB_TIMEOUT)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout = {DB_TIMEOUT * 1000}")
    _ensure_schema(conn)

    cache[key] = conn
    return conn


def _clear_connection_cache() -> None:
    """Close all cached connections and clear the thread-local cache.

    Call before moving or deleting database files, and in test teardown.
    """
    cache: dict[str, sqlite3.Connection] = getattr(_connection_cache, "conns", {})
    for conn in cache.values():
        with suppress(sqlite3.Error):
            conn.close()
    _connection_cache.conns = {}


@contextmanager
def connection_context(db_path: Path | str | None = None) -> Iterator[sqlite3.Connection]:
    """Yield a thread-local, reusable sqlite3 connection.

    Args:
        db_path: Path to the database file. If None, uses the default path.
    """
    path = Path(db_path) if db_path else default_db_path()
    yield _get_cached_connection(path)


def default_db_path() -> Path:
    """Return the default database path (read at call time so tests can patch XDG vars)."""
    return _paths.data_home() / "docmine.db"


__all__ = ["DB_TIMEOUT", "connection_context", "default_db_path"]
