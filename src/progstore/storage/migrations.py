"""
Versioned schema migrations.

Each migration runs once, in order, inside its own transaction and is
recorded in ``schema_migrations``.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import aiosqlite

from progstore.exceptions import StorageError
from progstore.logging import get_logger
from progstore.types import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="create_programs",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS programs (
                id TEXT PRIMARY KEY,
                hash TEXT NOT NULL UNIQUE,
                code BLOB NOT NULL,
                version INTEGER NOT NULL,
                size INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
            """,
        ),
    ),
)

_CREATE_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


async def applied_versions(conn: aiosqlite.Connection) -> set[int]:
    """Return the versions already recorded in schema_migrations."""
    await conn.execute(_CREATE_MIGRATIONS_TABLE)
    await conn.commit()
    async with conn.execute("SELECT version FROM schema_migrations") as cursor:
        rows = await cursor.fetchall()
    return {row[0] for row in rows}


async def run_migrations(
    conn: aiosqlite.Connection,
    migrations: tuple[Migration, ...] = MIGRATIONS,
) -> list[int]:
    """Apply pending migrations.

    Returns:
        The versions applied by this call, in order.

    Raises:
        StorageError: If a migration fails. The failing migration is rolled back.
    """
    try:
        done = await applied_versions(conn)
        applied: list[int] = []

        for migration in sorted(migrations, key=lambda m: m.version):
            if migration.version in done:
                continue
            # BEGIN IMMEDIATE so two processes migrating at once serialize.
            await conn.execute("BEGIN IMMEDIATE")
            async with conn.execute(
                "SELECT 1 FROM schema_migrations WHERE version = ?", (migration.version,)
            ) as cursor:
                already = await cursor.fetchone()
            if already:
                await conn.rollback()
                continue
            for statement in migration.statements:
                await conn.execute(statement)
            await conn.execute(
                "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, utc_now().isoformat()),
            )
            await conn.commit()
            applied.append(migration.version)
            logger.info("Applied migration", version=migration.version, name=migration.name)
    except sqlite3.Error as e:
        if conn.in_transaction:
            await conn.rollback()
        raise StorageError("Migration failed", {"reason": str(e)}) from e

    return applied
