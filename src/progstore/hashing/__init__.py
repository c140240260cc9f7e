"""
Content hash strategies, dispatched by format version.

Each FormatVersion maps to exactly one strategy in STRATEGIES. Adding a
format means adding an enum member and a table entry.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from progstore.classifier import classify_document, load_document
from progstore.felt import render_hash
from progstore.hashing.compiled_class import compiled_class_hash
from progstore.hashing.program import program_hash
from progstore.types import FormatVersion, Identification


@dataclass(frozen=True)
class HashOptions:
    """Protocol constants that feed into content hashes."""

    bootloader_version: int = 0
    entrypoint: str = "main"


Strategy = Callable[[dict[str, Any], HashOptions], int]

STRATEGIES: dict[FormatVersion, Strategy] = {
    FormatVersion.COMPILED_CLASS: lambda document, options: compiled_class_hash(document),
    FormatVersion.PLAIN_PROGRAM: lambda document, options: program_hash(
        document,
        bootloader_version=options.bootloader_version,
        entrypoint=options.entrypoint,
    ),
}


def hash_document(
    document: dict[str, Any],
    format_version: FormatVersion,
    options: HashOptions | None = None,
) -> str:
    """Compute the rendered content hash of an already classified document."""
    strategy = STRATEGIES[format_version]
    return render_hash(strategy(document, options or HashOptions()))


def identify(payload: bytes, options: HashOptions | None = None) -> Identification:
    """Classify a payload and compute its content hash.

    Raises:
        ClassificationError: Payload metadata is malformed.
        UnsupportedFormatError: compiler_version names an unknown major version.
        ParseError: Payload does not match its format's structure.
    """
    document = load_document(payload)
    format_version = classify_document(document)
    return Identification(
        format_version=format_version,
        content_hash=hash_document(document, format_version, options),
    )


__all__ = ["STRATEGIES", "HashOptions", "hash_document", "identify"]
