"""
Fixed-size pool of aiosqlite connections.

Connections are opened once and handed out per operation through
``acquire()``. A connection is always returned to the pool, after a rollback
when the operation failed.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from progstore.exceptions import StorageError
from progstore.logging import get_logger

logger = get_logger(__name__)


class ConnectionPool:
    """A bounded set of SQLite connections shared by concurrent requests.

    Args:
        db_path: SQLite database file. Parent directories are created.
        size: Number of connections.
        busy_timeout_ms: How long a connection waits on a locked database.
    """

    def __init__(self, db_path: str | Path, size: int = 5, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path)
        self.size = size
        self.busy_timeout_ms = busy_timeout_ms
        self._idle: asyncio.Queue[aiosqlite.Connection] | None = None
        self._connections: list[aiosqlite.Connection] = []

    @property
    def is_open(self) -> bool:
        return self._idle is not None

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            # journal_mode answers with a row; an unread cursor keeps its lock.
            async with conn.execute("PRAGMA journal_mode = WAL") as cursor:
                await cursor.fetchone()
        except BaseException:
            await conn.close()
            raise
        return conn

    async def open(self) -> None:
        """Open all connections.

        Raises:
            StorageError: If the database cannot be opened.
        """
        if self._idle is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        try:
            for _ in range(self.size):
                conn = await self._connect()
                self._connections.append(conn)
                idle.put_nowait(conn)
        except (sqlite3.Error, OSError) as e:
            await self._close_all()
            raise StorageError(
                "Failed to open database", {"db_path": str(self.db_path)}
            ) from e

        self._idle = idle
        logger.info("Connection pool opened", db_path=str(self.db_path), size=self.size)

    async def close(self) -> None:
        """Close every connection. Safe to call more than once."""
        if self._idle is None:
            return
        self._idle = None
        await self._close_all()
        logger.info("Connection pool closed", db_path=str(self.db_path))

    async def _close_all(self) -> None:
        connections, self._connections = self._connections, []
        for conn in connections:
            await conn.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Check out a connection for the duration of one operation.

        Raises:
            StorageError: If the pool is not open.
        """
        idle = self._idle
        if idle is None:
            raise StorageError("Connection pool is not open", {"db_path": str(self.db_path)})

        conn = await idle.get()
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                await conn.rollback()
            raise
        finally:
            idle.put_nowait(conn)

    async def __aenter__(self) -> ConnectionPool:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
