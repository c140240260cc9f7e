"""
Async HTTP client for a running program store.

Uploads are idempotent on the server, so transport failures and gateway
errors are retried with exponential backoff. HTTP error statuses are mapped
back onto the exception hierarchy.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from progstore.exceptions import (
    ClassificationError,
    DuplicateContentError,
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
)
from progstore.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUSES = frozenset({502, 503, 504})


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def raise_for_status(response: httpx.Response) -> None:
    """Translate an error response into a ProgramStoreError."""
    if response.is_success:
        return

    status = response.status_code
    body = response.text.strip()
    context = {"status": status, "url": str(response.request.url)}

    if status in (400, 422):
        raise ClassificationError(body or "Bad request", context)
    if status == 404:
        raise NotFoundError(body or "Program not found", context)
    if status == 409:
        raise DuplicateContentError(body, context)
    if status == 413:
        raise PayloadTooLargeError(body or "Upload too large", context)
    raise StorageError(body or "Server error", context)


class ProgramStoreClient:
    """Client for the upload/get endpoints.

    Args:
        base_url: Server URL, e.g. ``http://localhost:3000``.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts for retryable failures.
        backoff: Multiplier for the exponential backoff between attempts.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ProgramStoreClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=10),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await client.request(method, path, **kwargs)
                    if response.status_code in RETRY_STATUSES:
                        logger.warning(
                            "Retryable response", status=response.status_code, path=path
                        )
                        raise _RetryableStatus(response)
        except _RetryableStatus as e:
            response = e.response
        except httpx.TransportError as e:
            raise StorageError(
                "Program store unreachable", {"base_url": self.base_url, "error": str(e)}
            ) from e

        raise_for_status(response)
        return response

    async def upload_program(self, payload: bytes, filename: str = "program.json") -> str:
        """Upload a program and return its content hash."""
        response = await self._send(
            "POST",
            "/upload-program",
            files={"program": (filename, payload, "application/json")},
        )
        return response.text.strip()

    async def get_program(self, program_hash: str) -> bytes:
        """Download a stored program."""
        response = await self._send(
            "GET", "/get-program", params={"program_hash": program_hash}
        )
        return response.content

    @asynccontextmanager
    async def stream_program(self, program_hash: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """Stream a stored program without buffering it.

        Usage::

            async with client.stream_program(h) as chunks:
                async for chunk in chunks:
                    ...
        """
        client = await self._get_client()
        try:
            async with client.stream(
                "GET", "/get-program", params={"program_hash": program_hash}
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise_for_status(response)
                yield response.aiter_bytes()
        except httpx.TransportError as e:
            raise StorageError(
                "Program store unreachable", {"base_url": self.base_url, "error": str(e)}
            ) from e
