"""Async SQLite persistence: connection pool, migrations and the program store."""

from progstore.storage.pool import ConnectionPool
from progstore.storage.store import ProgramStore

__all__ = ["ConnectionPool", "ProgramStore"]
