"""
Configuration management using pydantic-settings.

Loads configuration from PROGRAM_STORE_* environment variables and .env
files. Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from progstore.exceptions import ConfigurationError
from progstore.types import DuplicatePolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All fields can be overridden with a ``PROGRAM_STORE_`` prefixed variable,
    e.g. ``PROGRAM_STORE_DATABASE_PATH=/data/programs.db``.

    Storage:
        DATABASE_PATH: SQLite database file
        DB_POOL_SIZE: Number of pooled connections
        DB_BUSY_TIMEOUT_MS: How long a writer waits for a locked database

    Server:
        HOST, PORT: Bind address for ``progstore serve``
        MAX_UPLOAD_BYTES: Upload cap; unset means unbounded
        STREAM_CHUNK_SIZE: Bytes per chunk when streaming a program back
        LEGACY_STATUS_CODES: Answer 500 for parse failures and unknown hashes

    Hashing:
        DUPLICATE_POLICY: "ignore" (no-op) or "reject" re-uploads
        BOOTLOADER_VERSION: Constant mixed into the program hash chain
        PROGRAM_ENTRYPOINT: Function whose pc is the program's main
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROGRAM_STORE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    DATABASE_PATH: Path = Field(
        default=Path(".data/programs.db"), description="SQLite database file"
    )
    DB_POOL_SIZE: int = Field(
        default=5, ge=1, le=64, description="Pooled database connections"
    )
    DB_BUSY_TIMEOUT_MS: int = Field(
        default=5000, ge=0, description="SQLite busy timeout in milliseconds"
    )

    # Server
    HOST: str = Field(default="0.0.0.0", description="Bind host")
    PORT: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    MAX_UPLOAD_BYTES: int | None = Field(
        default=None, ge=1, description="Upload size cap (unset = unbounded)"
    )
    STREAM_CHUNK_SIZE: int = Field(
        default=64 * 1024, ge=1, description="Chunk size for streamed downloads"
    )
    LEGACY_STATUS_CODES: bool = Field(
        default=False,
        description="Report parse failures and unknown hashes as 500",
    )

    # Hashing
    DUPLICATE_POLICY: DuplicatePolicy = Field(
        default=DuplicatePolicy.IGNORE, description="Re-upload handling"
    )
    BOOTLOADER_VERSION: int = Field(
        default=0, ge=0, description="Bootloader version in the program hash chain"
    )
    PROGRAM_ENTRYPOINT: str = Field(
        default="main", min_length=1, description="Plain-program entrypoint"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON log file")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        """Accept lowercase level names."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("PROGRAM_ENTRYPOINT")
    @classmethod
    def validate_entrypoint(cls, v: str) -> str:
        """Entrypoint is a bare identifier, scoping is added when resolving."""
        if "." in v or not v.strip():
            raise ValueError("PROGRAM_ENTRYPOINT must be a bare function name")
        return v.strip()

    @property
    def max_part_size(self) -> int:
        """Multipart part size limit handed to Starlette's form parser."""
        # Starlette caps text parts at 1 MiB unless told otherwise.
        return self.MAX_UPLOAD_BYTES or 2**63 - 1

    def ensure_directories(self) -> None:
        """Create the database directory if it doesn't exist."""
        self.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)

    def display(self) -> dict[str, str | int | bool | None]:
        """Return settings as plain values for display."""
        return {
            "DATABASE_PATH": str(self.DATABASE_PATH),
            "DB_POOL_SIZE": self.DB_POOL_SIZE,
            "DB_BUSY_TIMEOUT_MS": self.DB_BUSY_TIMEOUT_MS,
            "HOST": self.HOST,
            "PORT": self.PORT,
            "MAX_UPLOAD_BYTES": self.MAX_UPLOAD_BYTES,
            "STREAM_CHUNK_SIZE": self.STREAM_CHUNK_SIZE,
            "LEGACY_STATUS_CODES": self.LEGACY_STATUS_CODES,
            "DUPLICATE_POLICY": self.DUPLICATE_POLICY.value,
            "BOOTLOADER_VERSION": self.BOOTLOADER_VERSION,
            "PROGRAM_ENTRYPOINT": self.PROGRAM_ENTRYPOINT,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If settings are invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError("Invalid configuration", {"fields": fields}) from e


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
