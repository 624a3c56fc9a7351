"""
SQLite connection wrapper used by every storage function.

Connections run in autocommit mode (``isolation_level=None``); multi-statement
writes open an explicit transaction with :meth:`DatabaseConnection.transaction`
so that a merge or cascade delete commits or rolls back as a unit.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from .logger import get_logger

log = get_logger(__name__)


class DatabaseConnection:
    """Thin wrapper over ``sqlite3.Connection`` with WAL and foreign keys on."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> DatabaseConnection:
        db_dir = os.path.dirname(os.path.abspath(self.db_path))
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self._conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute("PRAGMA busy_timeout=5000;")
        log.debug("Connected to SQLite: %s", self.db_path)
        return self

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def execute(self, query: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        if not self._conn:
            raise RuntimeError("SQLite connection not established")
        return self._conn.execute(query, params)

    def executemany(self, query: str, rows: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        if not self._conn:
            raise RuntimeError("SQLite connection not established")
        return self._conn.executemany(query, rows)

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[DatabaseConnection]:
        """Run the block in one transaction; roll back on any exception.

        ``BEGIN IMMEDIATE`` takes the write lock up front so two writers never
        both read a snapshot and then race to commit.
        """
        self.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
        try:
            yield self
        except BaseException:
            # SQLite may already have rolled back on its own (e.g. disk full).
            if self._conn is not None and self._conn.in_transaction:
                self.execute("ROLLBACK;")
            raise
        else:
            self.execute("COMMIT;")

    def __enter__(self) -> DatabaseConnection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def get_database_connection(db_path: str) -> DatabaseConnection:
    """Open a connection to ``db_path``; use as a context manager to close it.

    Example:
        >>> with get_database_connection("data/recall.db") as conn:
        ...     rows = conn.execute("SELECT id, name FROM persons").fetchall()
    """
    return DatabaseConnection(db_path).connect()
