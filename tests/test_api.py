"""
Tests for the HTTP API.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Generator

import orjson
import pytest
from fastapi.testclient import TestClient

from progstore.api.server import create_app, status_for
from progstore.config import Settings
from progstore.exceptions import (
    ClassificationError,
    DuplicateContentError,
    NotFoundError,
    ParseError,
    PayloadTooLargeError,
    StorageError,
    UnsupportedFormatError,
)
from progstore.hashing import identify
from progstore.logging import ROOT_LOGGER, setup_logging
from progstore.types import Artifact, DuplicatePolicy


@pytest.fixture
def client(settings: Settings) -> Generator[TestClient, None, None]:
    """API client with the lifespan (pool, migrations) running."""
    with TestClient(create_app(settings)) as client:
        yield client


def make_client(settings: Settings, **overrides: Any) -> TestClient:
    return TestClient(create_app(settings.model_copy(update=overrides)))


def upload(client: TestClient, payload: bytes, filename: str | None = "program.json") -> Any:
    if filename is None:
        return client.post(
            "/upload-program",
            data={"program": payload.decode("utf-8")},
            files={"unused": ("unused.txt", b"")},
        )
    return client.post(
        "/upload-program", files={"program": (filename, payload, "application/json")}
    )


class TestUploadProgram:
    """POST /upload-program."""

    def test_compiled_class_round_trip(self, client: TestClient, casm_payload: bytes) -> None:
        response = upload(client, casm_payload)

        assert response.status_code == 200
        content_hash = response.text
        assert content_hash.startswith("0x")
        assert content_hash == identify(casm_payload).content_hash

        fetched = client.get("/get-program", params={"program_hash": content_hash})
        assert fetched.status_code == 200
        assert fetched.content == casm_payload

    def test_plain_program(self, client: TestClient, program_document: dict[str, Any]) -> None:
        del program_document["compiler_version"]
        payload = orjson.dumps(program_document)

        response = upload(client, payload)

        assert response.status_code == 200
        assert response.text == identify(payload).content_hash

    def test_text_part(self, client: TestClient, casm_payload: bytes) -> None:
        response = upload(client, casm_payload, filename=None)
        assert response.status_code == 200
        assert response.text == identify(casm_payload).content_hash

    def test_reupload_returns_same_hash(self, client: TestClient, casm_payload: bytes) -> None:
        first = upload(client, casm_payload)
        second = upload(client, casm_payload)
        assert first.status_code == second.status_code == 200
        assert first.text == second.text

    def test_unsupported_version(self, client: TestClient) -> None:
        response = upload(client, b'{"compiler_version": "5.0.0", "bytecode": []}')
        assert response.status_code == 400

    def test_unsupported_version_stores_nothing(self, settings: Settings) -> None:
        with TestClient(create_app(settings)) as client:
            upload(client, b'{"compiler_version": "5.0.0"}')
            engine = client.app.state.engine
            count = client.portal.call(engine.store.count)
        assert count == 0

    def test_invalid_json(self, client: TestClient) -> None:
        response = upload(client, b"not json at all")
        assert response.status_code == 400

    def test_missing_program_part(self, client: TestClient) -> None:
        response = client.post("/upload-program", files={"other": ("x.json", b"{}")})
        assert response.status_code == 400

    def test_parse_failure(self, client: TestClient) -> None:
        response = upload(client, b'{"compiler_version": "2.1.0"}')
        assert response.status_code == 400

    def test_parse_failure_legacy(self, settings: Settings) -> None:
        with make_client(settings, LEGACY_STATUS_CODES=True) as client:
            response = upload(client, b'{"compiler_version": "2.1.0"}')
        assert response.status_code == 500

    def test_reject_policy(self, settings: Settings, casm_payload: bytes) -> None:
        with make_client(settings, DUPLICATE_POLICY=DuplicatePolicy.REJECT) as client:
            first = upload(client, casm_payload)
            second = upload(client, casm_payload)
        assert first.status_code == 200
        assert second.status_code == 409
        assert second.text == first.text

    def test_size_limit(self, settings: Settings, casm_payload: bytes) -> None:
        with make_client(settings, MAX_UPLOAD_BYTES=32) as client:
            response = upload(client, casm_payload)
        assert response.status_code == 413

    def test_request_id_echoed(self, client: TestClient, casm_payload: bytes) -> None:
        response = client.post(
            "/upload-program",
            files={"program": ("p.json", casm_payload)},
            headers={"X-Request-ID": "req_test"},
        )
        assert response.headers["X-Request-ID"] == "req_test"


class TestGetProgram:
    """GET /get-program."""

    def test_headers(self, client: TestClient, casm_payload: bytes) -> None:
        content_hash = upload(client, casm_payload).text

        response = client.get("/get-program", params={"program_hash": content_hash})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert (
            response.headers["content-disposition"]
            == f'attachment; filename="{content_hash}.json"'
        )
        assert int(response.headers["content-length"]) == len(casm_payload)

    def test_unknown_hash(self, client: TestClient) -> None:
        response = client.get("/get-program", params={"program_hash": "deadbeef"})
        assert response.status_code == 404

    def test_unknown_hash_legacy(self, settings: Settings) -> None:
        with make_client(settings, LEGACY_STATUS_CODES=True) as client:
            response = client.get("/get-program", params={"program_hash": "deadbeef"})
        assert response.status_code == 500

    def test_missing_parameter(self, client: TestClient) -> None:
        assert client.get("/get-program").status_code == 422


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestStatusMapping:
    @pytest.mark.parametrize(
        "exc,status,legacy_status",
        [
            (ClassificationError("x"), 400, 400),
            (UnsupportedFormatError("x"), 400, 400),
            (ParseError("x"), 400, 500),
            (NotFoundError("x"), 404, 500),
            (DuplicateContentError("0x1"), 409, 409),
            (PayloadTooLargeError("x"), 413, 413),
            (StorageError("x"), 500, 500),
        ],
    )
    def test_status_for(self, exc: Exception, status: int, legacy_status: int) -> None:
        assert status_for(exc) == status
        assert status_for(exc, legacy=True) == legacy_status


class TestStreamFailureLogging:
    """Errors while the body streams are logged under the request."""

    def test_stream_failure_keeps_request_id(
        self, settings: Settings, casm_payload: bytes, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        log_file = settings.DATABASE_PATH.parent / "logs" / "api.jsonl"
        app = create_app(settings.model_copy(update={"LOG_FILE": log_file}))

        async def broken_payload(artifact: Artifact, chunk_size: int = 16) -> AsyncIterator[bytes]:
            yield b"{"
            raise StorageError("Program payload ended early")

        try:
            with TestClient(app, raise_server_exceptions=False) as client:
                content_hash = upload(client, casm_payload).text
                monkeypatch.setattr(client.app.state.engine.store, "iter_payload", broken_payload)
                client.get(
                    "/get-program",
                    params={"program_hash": content_hash},
                    headers={"X-Request-ID": "req_stream"},
                )
        finally:
            root = logging.getLogger(ROOT_LOGGER)
            for handler in root.handlers:
                handler.close()
            setup_logging("INFO")

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        failures = [e for e in entries if e["message"] == "Program stream failed"]
        assert len(failures) == 1
        assert failures[0]["request_id"] == "req_stream"
        assert failures[0]["fields"]["content_hash"] == content_hash
        assert "StorageError" in failures[0]["exception"]
