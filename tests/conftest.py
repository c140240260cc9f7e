"""
Pytest configuration and fixtures for program store tests.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, AsyncGenerator, Generator
from unittest.mock import patch

import orjson
import pytest

from progstore.config import Settings, clear_settings_cache
from progstore.engine import ContentAddressingEngine
from progstore.storage import ConnectionPool, ProgramStore

PRIME_HEX = "0x800000000000011000000000000000000000000000000000000000000000001"

CASM_DOCUMENT: dict[str, Any] = {
    "prime": PRIME_HEX,
    "compiler_version": "2.1.0",
    "bytecode": [
        "0xa0680017fff8000",
        "0x7",
        "0x482680017ffa8000",
        "0xfffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff",
        "0x400280007ff97fff",
        "0x10780017fff7fff",
        "0x1208b7fff7fff7ffe",
    ],
    "hints": [[0, [{"TestLessThanOrEqual": {"lhs": {"Immediate": "0x0"}}}]]],
    "pythonic_hints": [],
    "entry_points_by_type": {
        "EXTERNAL": [
            {
                "selector": "0x362398bec32bc0ebb411203221a35a0301193a96f317ebe5e40be9f60d15320",
                "offset": 0,
                "builtins": ["range_check"],
            }
        ],
        "L1_HANDLER": [],
        "CONSTRUCTOR": [],
    },
}

PROGRAM_DOCUMENT: dict[str, Any] = {
    "prime": PRIME_HEX,
    "compiler_version": "0.13.1",
    "main_scope": "__main__",
    "builtins": ["output", "pedersen"],
    "data": [
        "0x40780017fff7fff",
        "0x1",
        "0x480680017fff8000",
        "0x2a",
        "0x208b7fff7fff7ffe",
    ],
    "identifiers": {
        "__main__.main": {"type": "function", "pc": 2, "decorators": []},
        "__main__.helper": {"type": "function", "pc": 0, "decorators": []},
    },
    "hints": {"0": [{"code": "print('hi')", "accessible_scopes": ["__main__"]}]},
    "reference_manager": {"references": []},
    "attributes": [],
    "debug_info": {"file_contents": {}, "instruction_locations": {}},
}


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def casm_document() -> dict[str, Any]:
    """A fresh copy of a small compiled class document."""
    return copy.deepcopy(CASM_DOCUMENT)


@pytest.fixture
def program_document() -> dict[str, Any]:
    """A fresh copy of a small Cairo 0 program document."""
    return copy.deepcopy(PROGRAM_DOCUMENT)


@pytest.fixture
def casm_payload(casm_document: dict[str, Any]) -> bytes:
    return orjson.dumps(casm_document)


@pytest.fixture
def program_payload(program_document: dict[str, Any]) -> bytes:
    return orjson.dumps(program_document)


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock PROGRAM_STORE_* environment variables."""
    env_vars = {
        "PROGRAM_STORE_DATABASE_PATH": str(temp_dir / "db" / "programs.db"),
        "PROGRAM_STORE_DB_POOL_SIZE": "3",
        "PROGRAM_STORE_PORT": "3100",
        "PROGRAM_STORE_LOG_LEVEL": "debug",
        "PROGRAM_STORE_DUPLICATE_POLICY": "ignore",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        DATABASE_PATH=temp_dir / "programs.db",
        DB_POOL_SIZE=3,
        STREAM_CHUNK_SIZE=16,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
async def pool(temp_dir: Path) -> AsyncGenerator[ConnectionPool, None]:
    """An open connection pool on a temporary database."""
    pool = ConnectionPool(temp_dir / "store.db", size=3)
    await pool.open()
    yield pool
    await pool.close()


@pytest.fixture
async def store(pool: ConnectionPool) -> ProgramStore:
    """A migrated program store."""
    store = ProgramStore(pool)
    await store.init()
    return store


@pytest.fixture
def engine(store: ProgramStore) -> ContentAddressingEngine:
    """An engine with a small chunk size so streaming spans several reads."""
    return ContentAddressingEngine(store, chunk_size=16)


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
