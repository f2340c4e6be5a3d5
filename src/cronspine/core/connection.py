"""Open the engine's database from ``CRONSPINE_DATABASE_URL``.

The engine persists to SQLite only. Accepted forms::

    None, "", "memory", ":memory:"     in-memory database (tests, dry runs)
    sqlite:///var/lib/cron/cron.db     file database, parents created
    ./data/cron.db                     bare path, same as above

Anything else with a scheme (``postgresql://``...) is a :class:`ConfigError`
at startup rather than a surprise on the first checkpoint write.

Usage::

    conn, info = create_connection(settings.database_url, init_schema=True)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cronspine.core.errors import ConfigError
from cronspine.core.logging import get_logger
from cronspine.core.schema import create_core_tables
from cronspine.core.sqlite_conn import SqliteConnection

logger = get_logger(__name__)

_MEMORY_ALIASES = frozenset({"", "memory", ":memory:"})


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    """Where the engine's state lives for this process."""

    backend: str
    path: str | None = None

    @property
    def persistent(self) -> bool:
        return self.path is not None


def database_path(url: str | None) -> Path | None:
    """Resolve *url* to a file path, or ``None`` for an in-memory database."""
    if url is None or url in _MEMORY_ALIASES:
        return None
    if url.startswith("sqlite://"):
        # sqlite:///cron.db is relative, sqlite:////srv/cron.db absolute
        target = url.removeprefix("sqlite://").removeprefix("/")
        if target in _MEMORY_ALIASES:
            return None
        return Path(target)
    if "://" in url:
        raise ConfigError(f"Unsupported database URL: {url}")
    return Path(url)


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
) -> tuple[SqliteConnection, ConnectionInfo]:
    """Open the database named by *db*; create the engine tables if asked."""
    path = database_path(db)
    if path is None:
        conn = SqliteConnection(":memory:")
        info = ConnectionInfo(backend="sqlite")
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        resolved = str(path.resolve())
        conn = SqliteConnection(resolved)
        info = ConnectionInfo(backend="sqlite", path=resolved)

    if init_schema:
        create_core_tables(conn)

    logger.debug("db.connected", backend=info.backend, path=info.path)
    return conn, info


__all__ = ["ConnectionInfo", "create_connection", "database_path"]
