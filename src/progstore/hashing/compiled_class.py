"""
Compiled class (CASM) hash.

poseidon(["COMPILED_CLASS_V1", external, l1_handler, constructor, bytecode])
where each entry point list hashes [selector, offset, poseidon(builtins)] per
entry, and the bytecode hash honours bytecode_segment_lengths when present.
"""

from __future__ import annotations

from typing import Any

from poseidon_py.poseidon_hash import poseidon_hash_many

from progstore.exceptions import ParseError
from progstore.felt import (
    FIELD_PRIME,
    check_prime,
    encode_short_string,
    parse_felt,
    parse_felt_list,
)
from progstore.types import FormatVersion

COMPILED_CLASS_VERSION = encode_short_string("COMPILED_CLASS_V1")

ENTRY_POINT_TYPES = ("EXTERNAL", "L1_HANDLER", "CONSTRUCTOR")

# Bound on bytecode_segment_lengths nesting; compilers emit two levels.
MAX_SEGMENT_DEPTH = 64


def _error(message: str, field: str) -> ParseError:
    return ParseError(
        message, {"format_version": FormatVersion.COMPILED_CLASS.label, "field": field}
    )


def _entry_points_hash(entry_points: Any, field: str) -> int:
    if not isinstance(entry_points, list):
        raise _error("Expected a list of entry points", field)

    values: list[int] = []
    for i, entry in enumerate(entry_points):
        where = f"{field}[{i}]"
        if not isinstance(entry, dict):
            raise _error("Expected an entry point object", where)

        offset = entry.get("offset")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise _error("Entry point offset must be a non-negative integer", f"{where}.offset")

        builtins = entry.get("builtins") or []
        if not isinstance(builtins, list) or not all(isinstance(b, str) for b in builtins):
            raise _error("Entry point builtins must be a list of names", f"{where}.builtins")

        values.append(parse_felt(entry.get("selector"), f"{where}.selector"))
        values.append(offset)
        values.append(poseidon_hash_many([encode_short_string(b) for b in builtins]))

    return poseidon_hash_many(values)


def _bytecode_hash(bytecode: list[int], segment_lengths: Any) -> int:
    if segment_lengths is None:
        return poseidon_hash_many(bytecode)

    cursor = 0

    def visit(node: Any, depth: int) -> tuple[int, int]:
        nonlocal cursor
        if depth > MAX_SEGMENT_DEPTH:
            raise _error("Segment lengths nested too deeply", "bytecode_segment_lengths")
        if isinstance(node, bool):
            raise _error("Invalid segment length", "bytecode_segment_lengths")
        if isinstance(node, int):
            if node < 0 or cursor + node > len(bytecode):
                raise _error("Segment lengths exceed bytecode", "bytecode_segment_lengths")
            segment = bytecode[cursor : cursor + node]
            cursor += node
            return node, poseidon_hash_many(segment)
        if isinstance(node, list):
            children = [visit(child, depth + 1) for child in node]
            flat = [value for pair in children for value in pair]
            length = sum(child_length for child_length, _ in children)
            return length, (poseidon_hash_many(flat) + 1) % FIELD_PRIME
        raise _error("Invalid segment length", "bytecode_segment_lengths")

    _, digest = visit(segment_lengths, 0)
    if cursor != len(bytecode):
        raise _error("Segment lengths do not cover the bytecode", "bytecode_segment_lengths")
    return digest


def compiled_class_hash(document: dict[str, Any]) -> int:
    """Compute the compiled class hash of a CASM document.

    Raises:
        ParseError: If the document is not a structurally valid compiled class.
    """
    check_prime(document)

    if not isinstance(document.get("hints"), list):
        raise _error("Missing or invalid hints", "hints")
    if "bytecode" not in document:
        raise _error("Missing field", "bytecode")
    bytecode = parse_felt_list(document["bytecode"], "bytecode")

    by_type = document.get("entry_points_by_type")
    if not isinstance(by_type, dict):
        raise _error("Missing or invalid entry points", "entry_points_by_type")
    for kind in ENTRY_POINT_TYPES:
        if kind not in by_type:
            raise _error("Missing entry point type", f"entry_points_by_type.{kind}")

    return poseidon_hash_many(
        [
            COMPILED_CLASS_VERSION,
            _entry_points_hash(by_type["EXTERNAL"], "entry_points_by_type.EXTERNAL"),
            _entry_points_hash(by_type["L1_HANDLER"], "entry_points_by_type.L1_HANDLER"),
            _entry_points_hash(by_type["CONSTRUCTOR"], "entry_points_by_type.CONSTRUCTOR"),
            _bytecode_hash(bytecode, document.get("bytecode_segment_lengths")),
        ]
    )
