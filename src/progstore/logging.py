"""
Structured logging for the program store.

Every record carries the request it was emitted for. The API middleware binds
``request_id`` and ``operation`` with :func:`log_context`; the console handler
prints a short form of both, and the JSON file handler writes them as fields.

Usage::

    logger = get_logger(__name__)
    logger.info("Stored program", content_hash=h, size=n)
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER = "progstore"

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("aiosqlite", "httpx", "httpcore", "asyncio", "multipart", "python_multipart")

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_operation: ContextVar[str | None] = ContextVar("operation", default=None)

_RESERVED_KWARGS = ("stack_info", "stacklevel")


def current_context() -> dict[str, str]:
    """Return the bound request context, omitting unset values."""
    context: dict[str, str] = {}
    request_id = _request_id.get()
    operation = _operation.get()
    if request_id:
        context["request_id"] = request_id
    if operation:
        context["operation"] = operation
    return context


@contextmanager
def log_context(
    request_id: str | None = None,
    operation: str | None = None,
) -> Generator[None, None, None]:
    """Bind request context for the duration of a block.

    Args:
        request_id: Request ID, usually from X-Request-ID.
        operation: Short operation name such as "upload-program".
    """
    tokens = []
    if request_id is not None:
        tokens.append((_request_id, _request_id.set(request_id)))
    if operation is not None:
        tokens.append((_operation, _operation.set(operation)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = dict(getattr(record, "fields", {}))
        for key in ("request_id", "operation"):
            if key in fields:
                entry[key] = fields.pop(key)
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextRichHandler(RichHandler):
    """Rich console handler that prefixes the level with request context."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        fields = getattr(record, "fields", {})

        prefix = Text()
        request_id = fields.get("request_id")
        if request_id:
            prefix.append(request_id[-8:], style="dim")
        operation = fields.get("operation")
        if operation:
            if prefix:
                prefix.append(" ")
            prefix.append(operation, style="cyan")

        if not prefix:
            return level_text
        return Text.assemble(level_text, " ", prefix)

    def render_message(self, record: logging.LogRecord, message: str) -> Any:
        fields = {
            k: v
            for k, v in getattr(record, "fields", {}).items()
            if k not in ("request_id", "operation")
        }
        if not fields:
            return super().render_message(record, message)
        suffix = " ".join(f"{k}={v}" for k, v in fields.items())
        return Text.assemble(super().render_message(record, message), " ", (suffix, "dim"))


class ContextLogger:
    """Logger that turns keyword arguments into structured fields.

    ``logger.info("Stored program", size=10)`` attaches ``size`` plus the
    bound request context to the record as ``record.fields``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in _RESERVED_KWARGS if k in kwargs}
        fields = {**current_context(), **kwargs}
        self._logger.log(
            level, msg, *args, exc_info=exc_info, extra={"fields": fields}, **passthrough
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with the current traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_configured = False


def get_console() -> Console:
    """Console for log output; stderr so stdout stays clean for CLI results."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Configure the ``progstore`` logger tree.

    Safe to call more than once; handlers are replaced, not stacked.

    Args:
        log_level: Console level name (DEBUG, INFO, ...).
        log_file: Optional JSON Lines file. It always receives DEBUG and up.
        console_output: Attach the rich console handler.
    """
    global _configured

    level = getattr(logging, log_level.upper())
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.propagate = False
    root.setLevel(logging.DEBUG if log_file else level)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

    if console_output:
        console_handler = ContextRichHandler(
            console=get_console(),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        console_handler.setLevel(level)
        root.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger under the ``progstore`` tree.

    Configures console logging at INFO on first use if nothing else has.
    """
    if not _configured:
        setup_logging()
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return ContextLogger(logging.getLogger(name))
