"""
Custom exception hierarchy for the program store.

All exceptions inherit from ProgramStoreError, which carries optional
structured context for logging and for mapping errors to HTTP responses.
"""

from __future__ import annotations

from typing import Any


class ProgramStoreError(Exception):
    """Base exception for all program store errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ProgramStoreError):
    """Raised when configuration is invalid or missing."""

    pass


class ClassificationError(ProgramStoreError):
    """Raised when a blob's format metadata cannot be read.

    Examples:
        - Payload is not UTF-8 JSON
        - Top-level JSON value is not an object
        - compiler_version is not a string or has a non-numeric major part
    """

    pass


class UnsupportedFormatError(ClassificationError):
    """Raised when compiler_version names a major version we cannot hash.

    Context should include:
        - compiler_version: The version string found in the blob
        - major: The parsed major component
    """

    pass


class ParseError(ProgramStoreError):
    """Raised when a blob does not have the structure its format requires.

    Context should include:
        - format_version: The format the blob was classified as
        - field: The offending field, when known
    """

    pass


class DuplicateContentError(ProgramStoreError):
    """Raised under the reject policy when the content hash is already stored.

    Not a correctness failure: the artifact exists and ``content_hash`` can be
    used as-is.
    """

    def __init__(self, content_hash: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            "Program already stored",
            {"content_hash": content_hash, **(context or {})},
        )
        self.content_hash = content_hash


class NotFoundError(ProgramStoreError):
    """Raised when no artifact is stored under the requested hash."""

    pass


class StorageError(ProgramStoreError):
    """Raised when the persistence layer is unavailable or an operation fails.

    The originating driver exception is chained as ``__cause__``.
    """

    pass


class PayloadTooLargeError(ProgramStoreError):
    """Raised when an upload exceeds the configured MAX_UPLOAD_BYTES.

    Context should include:
        - size: The payload size in bytes
        - limit: The configured limit
    """

    pass
