"""
Core types for the program store.

- FormatVersion: closed enumeration of supported program formats
- DuplicatePolicy: what the engine does when a content hash already exists
- Frozen dataclasses for artifacts and operation results
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "prog", "req")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class FormatVersion(IntEnum):
    """Program formats, keyed by the major component of compiler_version."""

    PLAIN_PROGRAM = 0  # Cairo 0 program JSON
    COMPILED_CLASS = 2  # Cairo 1+ compiled class (CASM)

    @property
    def label(self) -> str:
        return self.name.lower()


class DuplicatePolicy(str, Enum):
    """Behavior when an upload's content hash is already stored."""

    IGNORE = "ignore"  # no-op, return the existing hash
    REJECT = "reject"  # raise DuplicateContentError


@dataclass(frozen=True)
class Artifact:
    """Metadata of a stored program. The payload itself stays in storage."""

    id: str
    content_hash: str
    format_version: FormatVersion
    size: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content_hash": self.content_hash,
            "format_version": int(self.format_version),
            "format": self.format_version.label,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Identification:
    """Result of classifying and hashing a payload, before persistence."""

    format_version: FormatVersion
    content_hash: str


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a store operation.

    ``created`` is False when the hash was already present and the upload was
    treated as a no-op.
    """

    content_hash: str
    format_version: FormatVersion
    size: int
    created: bool


@dataclass(frozen=True)
class ProgramStream:
    """A stored payload resolved by hash, readable chunk by chunk."""

    content_hash: str
    format_version: FormatVersion
    size: int
    chunks: AsyncIterator[bytes]

    @property
    def filename(self) -> str:
        return f"{self.content_hash}.json"

    async def read(self) -> bytes:
        """Drain the stream into memory."""
        return b"".join([chunk async for chunk in self.chunks])
