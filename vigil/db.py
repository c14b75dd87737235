"""Async access to the task database over the synchronous ``libsql`` driver.

Every driver call runs in a worker thread via ``asyncio.to_thread()``.
Where the data lives is decided by settings:

- ``TURSO_DATABASE_URL`` (+ ``TURSO_AUTH_TOKEN``): hosted Turso database.
- otherwise: a local SQLite file at ``database_path`` (WAL, 5 s busy timeout).

Tests pass an explicit path, which always wins.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import libsql

from vigil.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOCAL_PRAGMAS = ("PRAGMA journal_mode=WAL", "PRAGMA busy_timeout=5000")


class _AsyncCursor:
    """Result of one statement; row fetches happen off the event loop."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)


class _AsyncConnection:
    """One libsql connection. Usable as ``async with`` to close on exit."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def __aenter__(self) -> _AsyncConnection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        return _AsyncCursor(await asyncio.to_thread(self._conn.execute, sql, params))

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._conn.rollback)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _is_local(local_path_override: Path | None) -> bool:
    return local_path_override is not None or not settings.turso_database_url


def _connect(local_path_override: Path | None) -> Any:
    """Open a raw driver connection. Blocking; call from a worker thread."""
    if not _is_local(local_path_override):
        return libsql.connect(
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )

    path = Path(local_path_override or settings.database_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    for pragma in _LOCAL_PRAGMAS:
        conn.execute(pragma)
    return conn


# One lock per event loop: separate libsql connections to the same local
# file fail with "database is locked" when they overlap.
_local_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _local_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _local_locks.get(loop)
    if lock is None:
        lock = _local_locks[loop] = asyncio.Lock()
    return lock


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Return a new, unserialized connection; the caller closes it."""
    return _AsyncConnection(await asyncio.to_thread(_connect, local_path_override))


@asynccontextmanager
async def connection(
    local_path_override: Path | None = None,
) -> AsyncIterator[_AsyncConnection]:
    """Yield a connection, closed on exit.

    Local files allow one open connection per process at a time; remote
    Turso connections are not serialized.
    """
    if not _is_local(local_path_override):
        async with await get_connection(local_path_override) as db:
            yield db
        return
    async with _local_lock(), await get_connection(local_path_override) as db:
        yield db


@asynccontextmanager
async def transaction(
    local_path_override: Path | None = None,
) -> AsyncIterator[_AsyncConnection]:
    """Yield a connection that commits on success and rolls back on error."""
    async with connection(local_path_override) as db:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()
