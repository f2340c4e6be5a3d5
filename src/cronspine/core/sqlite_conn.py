"""SQLite connection adapter.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor) but
not ``fetchone()`` / ``fetchall()`` at the connection level. The stores in
``cronspine.core`` call ``conn.execute(...)`` and then read from the
returned cursor, so either shape works, but the adapter also serialises
access with a lock so the worker pool's threads can share one connection.

Usage::

    from cronspine.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    row = conn.execute("SELECT * FROM t").fetchone()
    conn.commit()
    conn.close()
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any


class SqliteConnection:
    """Adapter around ``sqlite3.Connection`` used by every store.

    Each ``execute`` returns a fresh cursor whose rows are already
    materialised, so concurrent callers never read each other's result set.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._lock = threading.RLock()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> _Result:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            return _Result(cursor.fetchall(), cursor.rowcount)

    def executemany(self, sql: str, params: list[tuple]) -> _Result:
        with self._lock:
            cursor = self._conn.executemany(sql, params)
            return _Result([], cursor.rowcount)

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


class _Result:
    """Materialised result of one statement (cursor-compatible subset)."""

    __slots__ = ("_rows", "rowcount")

    def __init__(self, rows: list, rowcount: int) -> None:
        self._rows = rows
        self.rowcount = rowcount

    def fetchone(self) -> Any:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list:
        return list(self._rows)
