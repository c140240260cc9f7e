"""
Program store: durable content hash → payload persistence.

The ``programs`` table holds one row per content hash. The UNIQUE
constraint on ``hash`` is the only thing that keeps concurrent uploads of the
same program from creating two rows; inserts never check first.
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from datetime import datetime

import aiosqlite

from progstore.exceptions import StorageError
from progstore.logging import get_logger
from progstore.storage.migrations import run_migrations
from progstore.storage.pool import ConnectionPool
from progstore.types import Artifact, FormatVersion, generate_id, utc_now

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

_INSERT = """
INSERT INTO programs (id, hash, code, version, size, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(hash) DO NOTHING
"""


class ProgramStore:
    """Persistence for program payloads, backed by a shared connection pool.

    Every method checks a connection out of the pool for a single statement
    (or a single migration run) and returns it immediately.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    async def init(self) -> list[int]:
        """Apply pending schema migrations.

        Returns:
            Versions applied by this call.
        """
        async with self.pool.acquire() as conn:
            applied = await run_migrations(conn)
        logger.debug("Program store ready", applied=applied)
        return applied

    async def insert(
        self,
        content_hash: str,
        payload: bytes,
        format_version: FormatVersion,
    ) -> bool:
        """Insert a program unless its hash is already stored.

        Returns:
            True if a row was created, False if the hash already existed.

        Raises:
            StorageError: If the insert fails.
        """
        row_id = generate_id()
        try:
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(
                    _INSERT,
                    (
                        row_id,
                        content_hash,
                        payload,
                        int(format_version),
                        len(payload),
                        utc_now().isoformat(),
                    ),
                )
                created = cursor.rowcount == 1
                await cursor.close()
                await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(
                "Failed to store program", {"content_hash": content_hash}
            ) from e

        if created:
            logger.debug("Inserted program row", id=row_id, content_hash=content_hash)
        return created

    async def lookup(self, content_hash: str) -> Artifact | None:
        """Return artifact metadata for a hash, or None if it is not stored.

        Raises:
            StorageError: If the query fails or the row is unreadable.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.execute(
                    "SELECT id, hash, version, size, created_at FROM programs WHERE hash = ?",
                    (content_hash,),
                ) as cursor:
                    row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(
                "Failed to look up program", {"content_hash": content_hash}
            ) from e

        if row is None:
            return None
        return self._row_to_artifact(row)

    async def iter_payload(
        self,
        artifact: Artifact,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Yield a stored payload in chunks of at most ``chunk_size`` bytes.

        Each chunk is read on its own pool checkout, so a slow consumer never
        holds a connection between chunks.

        Raises:
            StorageError: If a read fails or the row disappears mid-stream.
        """
        offset = 0
        while offset < artifact.size:
            try:
                async with self.pool.acquire() as conn:
                    async with conn.execute(
                        "SELECT substr(code, ?, ?) FROM programs WHERE id = ?",
                        (offset + 1, chunk_size, artifact.id),
                    ) as cursor:
                        row = await cursor.fetchone()
            except sqlite3.Error as e:
                raise StorageError(
                    "Failed to read program", {"content_hash": artifact.content_hash}
                ) from e

            if row is None or not row[0]:
                raise StorageError(
                    "Program payload ended early",
                    {"content_hash": artifact.content_hash, "offset": offset},
                )
            chunk = bytes(row[0])
            offset += len(chunk)
            yield chunk

    async def count(self) -> int:
        """Number of stored programs."""
        try:
            async with self.pool.acquire() as conn:
                async with conn.execute("SELECT COUNT(*) FROM programs") as cursor:
                    row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError("Failed to count programs") from e
        return int(row[0]) if row else 0

    async def ping(self) -> None:
        """Round-trip a trivial query.

        Raises:
            StorageError: If the database does not answer.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.execute("SELECT 1") as cursor:
                    await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError("Database unavailable") from e

    def _row_to_artifact(self, row: aiosqlite.Row) -> Artifact:
        try:
            format_version = FormatVersion(row["version"])
        except ValueError as e:
            raise StorageError(
                "Stored program has an unknown format version",
                {"content_hash": row["hash"], "version": row["version"]},
            ) from e
        return Artifact(
            id=row["id"],
            content_hash=row["hash"],
            format_version=format_version,
            size=row["size"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
