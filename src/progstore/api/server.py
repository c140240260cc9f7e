"""
Program Store HTTP API.

POST /upload-program   multipart part "program" → plain-text content hash
GET  /get-program      ?program_hash=... → streamed payload
GET  /health           storage round trip
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile

from progstore import __version__
from progstore.config import Settings, get_settings
from progstore.engine import ContentAddressingEngine
from progstore.exceptions import (
    ClassificationError,
    DuplicateContentError,
    NotFoundError,
    ParseError,
    PayloadTooLargeError,
    ProgramStoreError,
)
from progstore.logging import get_logger, log_context, setup_logging
from progstore.storage import ConnectionPool, ProgramStore
from progstore.types import ProgramStream, generate_id

logger = get_logger(__name__)

PROGRAM_FIELD = "program"


def status_for(exc: ProgramStoreError, legacy: bool = False) -> int:
    """Map an error to an HTTP status.

    With ``legacy`` set, parse failures and unknown hashes answer 500, matching
    clients written against the first deployment.
    """
    if isinstance(exc, PayloadTooLargeError):
        return 413
    if isinstance(exc, DuplicateContentError):
        return 409
    if isinstance(exc, NotFoundError):
        return 500 if legacy else 404
    if isinstance(exc, ParseError):
        return 500 if legacy else 400
    if isinstance(exc, ClassificationError):
        return 400
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the connection pool for the lifetime of the process."""
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    pool = ConnectionPool(
        settings.DATABASE_PATH,
        size=settings.DB_POOL_SIZE,
        busy_timeout_ms=settings.DB_BUSY_TIMEOUT_MS,
    )
    await pool.open()
    try:
        store = ProgramStore(pool)
        await store.init()
        app.state.engine = ContentAddressingEngine.from_settings(store, settings)
        logger.info("Program store API ready", version=__version__)
        yield
    finally:
        app.state.engine = None
        await pool.close()


def get_engine(request: Request) -> ContentAddressingEngine:
    """Dependency: the engine wired up by the lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("Program store is not initialized")
    return engine


async def read_program_part(request: Request, max_part_size: int) -> bytes:
    """Read the last ``program`` part of a multipart body.

    Raises:
        ClassificationError: The body has no ``program`` part.
    """
    async with request.form(max_part_size=max_part_size) as form:
        parts = form.getlist(PROGRAM_FIELD)
        if not parts:
            raise ClassificationError(
                "Multipart body has no program part", {"field": PROGRAM_FIELD}
            )
        part = parts[-1]
        if isinstance(part, UploadFile):
            return await part.read()
        return part.encode("utf-8")


async def logged_chunks(stream: ProgramStream, request_id: str) -> AsyncIterator[bytes]:
    """Relay a program stream, logging failures under the request's context.

    The body is sent after the middleware has returned, so its log context is
    no longer bound while chunks are read.
    """
    try:
        async for chunk in stream.chunks:
            yield chunk
    except ProgramStoreError:
        with log_context(request_id=request_id, operation="get-program"):
            logger.exception("Program stream failed", content_hash=stream.content_hash)
        raise


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
    """
    app = FastAPI(title="Program Store", version=__version__, lifespan=lifespan)
    app.state.settings = settings or get_settings()
    app.state.engine = None

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or generate_id("req")
        request.state.request_id = request_id
        with log_context(request_id=request_id, operation=request.url.path.strip("/")):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ProgramStoreError)
    async def handle_program_store_error(
        request: Request, exc: ProgramStoreError
    ) -> PlainTextResponse:
        status = status_for(exc, legacy=app.state.settings.LEGACY_STATUS_CODES)
        if status >= 500:
            logger.error("Request failed", status=status, error=repr(exc), exc_info=True)
        else:
            logger.warning("Request rejected", status=status, error=str(exc))

        if isinstance(exc, DuplicateContentError):
            return PlainTextResponse(exc.content_hash, status_code=status)
        return PlainTextResponse(exc.message, status_code=status)

    @app.post("/upload-program", response_class=PlainTextResponse)
    async def upload_program(
        request: Request,
        engine: ContentAddressingEngine = Depends(get_engine),
    ) -> PlainTextResponse:
        payload = await read_program_part(request, app.state.settings.max_part_size)
        result = await engine.upload(payload)
        return PlainTextResponse(result.content_hash)

    @app.get("/get-program")
    async def get_program(
        request: Request,
        program_hash: str = Query(..., description="Content hash returned by upload"),
        engine: ContentAddressingEngine = Depends(get_engine),
    ) -> StreamingResponse:
        stream = await engine.open(program_hash)
        return StreamingResponse(
            logged_chunks(stream, request.state.request_id),
            media_type="application/json",
            headers={
                "Content-Disposition": f'attachment; filename="{stream.filename}"',
                "Content-Length": str(stream.size),
            },
        )

    @app.get("/health")
    async def health(
        engine: ContentAddressingEngine = Depends(get_engine),
    ) -> dict[str, str]:
        await engine.store.ping()
        return {"status": "ok", "version": __version__}

    return app
