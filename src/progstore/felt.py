"""
Field element helpers shared by the hashing strategies.

Values in program JSON are elements of the STARK prime field ("felts"),
written as 0x-prefixed hex strings, decimal strings or plain JSON integers.
"""

from __future__ import annotations

import re
from typing import Any

from progstore.exceptions import NotFoundError, ParseError

FIELD_PRIME = 2**251 + 17 * 2**192 + 1

HASH_HEX_DIGITS = 64

_HEX_RE = re.compile(r"^(0x)?[0-9a-f]{1,64}$")


def parse_felt(value: Any, field: str) -> int:
    """Parse a felt from its JSON representation.

    Args:
        value: Hex string, decimal string or int.
        field: Name of the JSON field, used in error context.

    Raises:
        ParseError: If the value is not an integer in [0, FIELD_PRIME).
    """
    if isinstance(value, bool):
        raise ParseError("Expected a field element", {"field": field, "value": value})

    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            if text.startswith("0x"):
                number = int(text[2:], 16)
            else:
                number = int(text, 10)
        except ValueError as e:
            raise ParseError(
                "Expected a field element", {"field": field, "value": value[:80]}
            ) from e
    else:
        raise ParseError(
            "Expected a field element",
            {"field": field, "type": type(value).__name__},
        )

    if not 0 <= number < FIELD_PRIME:
        raise ParseError("Field element out of range", {"field": field})
    return number


def parse_felt_list(value: Any, field: str) -> list[int]:
    """Parse a JSON list of felts."""
    if not isinstance(value, list):
        raise ParseError("Expected a list of field elements", {"field": field})
    return [parse_felt(item, f"{field}[{i}]") for i, item in enumerate(value)]


def check_prime(document: dict[str, Any]) -> None:
    """Require the document's prime to be the STARK field prime."""
    if "prime" not in document:
        raise ParseError("Missing field", {"field": "prime"})
    raw = document["prime"]
    try:
        prime = int(raw, 16) if isinstance(raw, str) and raw.lower().startswith("0x") else int(raw)
    except (TypeError, ValueError) as e:
        raise ParseError("Invalid prime", {"field": "prime"}) from e
    if prime != FIELD_PRIME:
        raise ParseError("Unsupported prime", {"field": "prime", "prime": hex(prime)})


def encode_short_string(text: str) -> int:
    """Encode an ASCII string of at most 31 characters as a felt."""
    try:
        data = text.encode("ascii")
    except UnicodeEncodeError as e:
        raise ParseError("Short string must be ASCII", {"value": text[:80]}) from e
    if len(data) > 31:
        raise ParseError("Short string longer than 31 characters", {"value": text[:80]})
    return int.from_bytes(data, "big")


def render_hash(value: int) -> str:
    """Render a digest as ``0x`` followed by 64 lowercase hex digits."""
    return f"0x{value:0{HASH_HEX_DIGITS}x}"


def normalize_hash(text: str) -> str:
    """Normalize caller-supplied hash text to the rendered form.

    Accepts upper case, surrounding whitespace, a missing ``0x`` prefix and
    unpadded digits.

    Raises:
        NotFoundError: If the text cannot be the key of any stored program.
    """
    candidate = text.strip().lower()
    if not _HEX_RE.match(candidate):
        raise NotFoundError("Program not found", {"program_hash": text[:80]})
    digits = candidate[2:] if candidate.startswith("0x") else candidate
    return render_hash(int(digits, 16))
