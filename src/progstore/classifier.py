"""
Format classifier.

Reads the self-describing ``compiler_version`` field of an uploaded blob and
maps its major component to a FormatVersion. Blobs without the field are
plain programs.
"""

from __future__ import annotations

from typing import Any

import orjson

from progstore.exceptions import ClassificationError, UnsupportedFormatError
from progstore.types import FormatVersion

VERSION_FIELD = "compiler_version"


def load_document(payload: bytes) -> dict[str, Any]:
    """Decode a payload as a JSON object.

    Raises:
        ClassificationError: If the payload is not UTF-8 JSON or not an object.
    """
    try:
        document = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise ClassificationError(
            "Payload is not valid JSON", {"size": len(payload), "reason": str(e)[:120]}
        ) from e

    if not isinstance(document, dict):
        raise ClassificationError(
            "Payload must be a JSON object", {"type": type(document).__name__}
        )
    return document


def read_compiler_version(document: dict[str, Any]) -> str | None:
    """Return the compiler_version string, or None when the field is absent."""
    if VERSION_FIELD not in document:
        return None
    version = document[VERSION_FIELD]
    if not isinstance(version, str):
        raise ClassificationError(
            "compiler_version must be a string", {"type": type(version).__name__}
        )
    return version


def parse_major(version: str) -> int:
    """Parse the first dot-separated component of a version string."""
    head = version.split(".")[0].strip()
    if not (head.isascii() and head.isdigit()):
        raise ClassificationError(
            "compiler_version has no numeric major component",
            {VERSION_FIELD: version[:40]},
        )
    return int(head)


def classify_document(document: dict[str, Any]) -> FormatVersion:
    """Determine the format of a decoded document.

    Raises:
        ClassificationError: compiler_version is present but malformed.
        UnsupportedFormatError: The major version is not a known format.
    """
    version = read_compiler_version(document)
    if version is None:
        return FormatVersion.PLAIN_PROGRAM

    major = parse_major(version)
    try:
        return FormatVersion(major)
    except ValueError as e:
        raise UnsupportedFormatError(
            "Unsupported compiler version",
            {VERSION_FIELD: version[:40], "major": major},
        ) from e


def classify(payload: bytes) -> FormatVersion:
    """Determine the format of a raw payload."""
    return classify_document(load_document(payload))
