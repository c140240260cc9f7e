"""
Plain (Cairo 0) program hash.

The program is first stripped down to what the bootloader commits to:
bytecode, builtins and the pc of the entrypoint. Everything else (hints,
debug info, reference manager, attributes, other identifiers) is dropped and
cannot affect the hash.

The entrypoint is looked up as ``__main__.<entrypoint>`` whatever the
document declares as ``main_scope``. This follows cairo-vm; cairo-lang would
honour ``main_scope``. Compilers emit ``__main__`` for both, so real programs
hash the same either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from starknet_py.hash.utils import pedersen_hash

from progstore.exceptions import ParseError
from progstore.felt import check_prime, encode_short_string, parse_felt_list
from progstore.types import FormatVersion

KNOWN_BUILTINS = frozenset(
    {
        "output",
        "pedersen",
        "range_check",
        "ecdsa",
        "bitwise",
        "ec_op",
        "keccak",
        "poseidon",
        "range_check96",
        "add_mod",
        "mul_mod",
        "segment_arena",
    }
)

MAIN_SCOPE = "__main__"

# Bound on alias hops when resolving the entrypoint identifier.
MAX_ALIAS_DEPTH = 32


def _error(message: str, field: str, **context: Any) -> ParseError:
    return ParseError(
        message,
        {"format_version": FormatVersion.PLAIN_PROGRAM.label, "field": field, **context},
    )


@dataclass(frozen=True)
class StrippedProgram:
    """The part of a program that its hash commits to."""

    data: tuple[int, ...]
    builtins: tuple[str, ...]
    main: int


def _resolve_entrypoint(document: dict[str, Any], entrypoint: str) -> int:
    identifiers = document.get("identifiers")
    if not isinstance(identifiers, dict):
        raise _error("Missing or invalid identifiers", "identifiers")

    name = f"{MAIN_SCOPE}.{entrypoint}"
    for _ in range(MAX_ALIAS_DEPTH):
        identifier = identifiers.get(name)
        if not isinstance(identifier, dict):
            raise _error("Entrypoint not found", "identifiers", entrypoint=name)
        if identifier.get("type") == "alias":
            destination = identifier.get("destination")
            if not isinstance(destination, str):
                raise _error("Alias has no valid destination", "identifiers", entrypoint=name)
            name = destination
            continue
        pc = identifier.get("pc")
        if isinstance(pc, bool) or not isinstance(pc, int) or pc < 0:
            raise _error("Entrypoint has no valid pc", "identifiers", entrypoint=name)
        return pc

    raise _error("Alias chain too long", "identifiers", entrypoint=name)


def strip_program(document: dict[str, Any], entrypoint: str = "main") -> StrippedProgram:
    """Reduce a program document to its stripped form.

    Raises:
        ParseError: If data, builtins, prime or the entrypoint are invalid.
    """
    check_prime(document)

    if "data" not in document:
        raise _error("Missing field", "data")
    data = parse_felt_list(document["data"], "data")

    builtins = document.get("builtins", [])
    if not isinstance(builtins, list) or not all(isinstance(b, str) for b in builtins):
        raise _error("Builtins must be a list of names", "builtins")
    unknown = [b for b in builtins if b not in KNOWN_BUILTINS]
    if unknown:
        raise _error("Unknown builtin", "builtins", builtins=unknown)

    return StrippedProgram(
        data=tuple(data),
        builtins=tuple(builtins),
        main=_resolve_entrypoint(document, entrypoint),
    )


def compute_hash_chain(values: list[int]) -> int:
    """h(x0, h(x1, ... h(x[n-2], x[n-1])))."""
    if not values:
        raise ValueError("Cannot hash an empty chain")
    result = values[-1]
    for value in reversed(values[:-1]):
        result = pedersen_hash(value, result)
    return result


def stripped_program_hash(program: StrippedProgram, bootloader_version: int = 0) -> int:
    """Hash chain over [bootloader_version, main, n_builtins, builtins..., data...],
    prefixed with its own length."""
    chain = [
        bootloader_version,
        program.main,
        len(program.builtins),
        *(encode_short_string(b) for b in program.builtins),
        *program.data,
    ]
    return compute_hash_chain([len(chain), *chain])


def program_hash(
    document: dict[str, Any],
    bootloader_version: int = 0,
    entrypoint: str = "main",
) -> int:
    """Strip a program document and compute its hash chain."""
    return stripped_program_hash(strip_program(document, entrypoint), bootloader_version)
