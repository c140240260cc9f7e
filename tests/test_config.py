"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from progstore.config import Settings, clear_settings_cache, get_settings
from progstore.exceptions import ConfigurationError
from progstore.types import DuplicatePolicy


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from prefixed environment variables."""
        settings = get_settings()

        assert settings.DATABASE_PATH == Path(mock_env_vars["PROGRAM_STORE_DATABASE_PATH"])
        assert settings.DB_POOL_SIZE == 3
        assert settings.PORT == 3100
        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.DUPLICATE_POLICY is DuplicatePolicy.IGNORE

    def test_defaults(self) -> None:
        """Test defaults when nothing is configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.DB_POOL_SIZE == 5
        assert settings.HOST == "0.0.0.0"
        assert settings.PORT == 3000
        assert settings.MAX_UPLOAD_BYTES is None
        assert settings.LEGACY_STATUS_CODES is False
        assert settings.DUPLICATE_POLICY is DuplicatePolicy.IGNORE
        assert settings.BOOTLOADER_VERSION == 0
        assert settings.PROGRAM_ENTRYPOINT == "main"

    def test_unprefixed_variables_are_ignored(self) -> None:
        """Test that only PROGRAM_STORE_ variables are read."""
        with patch.dict(os.environ, {"PORT": "9999"}, clear=True):
            settings = Settings(_env_file=None)
        assert settings.PORT == 3000

    def test_reject_policy_from_env(self) -> None:
        env_vars = {"PROGRAM_STORE_DUPLICATE_POLICY": "reject"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)
        assert settings.DUPLICATE_POLICY is DuplicatePolicy.REJECT

    def test_unknown_policy_fails(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DUPLICATE_POLICY="overwrite")

    def test_invalid_log_level_fails(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_LEVEL="LOUD")

    @pytest.mark.parametrize("entrypoint", ["__main__.main", "a.b", "   "])
    def test_entrypoint_must_be_bare_name(self, entrypoint: str) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, PROGRAM_ENTRYPOINT=entrypoint)

    @pytest.mark.parametrize("field,value", [("DB_POOL_SIZE", 0), ("PORT", 70000)])
    def test_out_of_range_values_fail(self, field: str, value: int) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_get_settings_wraps_validation_errors(self) -> None:
        env_vars = {"PROGRAM_STORE_PORT": "not-a-port"}
        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                get_settings()
        assert exc_info.value.context["fields"] == ["PORT"]

    def test_legacy_status_codes_from_env(self) -> None:
        env_vars = {"PROGRAM_STORE_LEGACY_STATUS_CODES": "true"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)
        assert settings.LEGACY_STATUS_CODES is True


class TestSettingsHelpers:
    """Tests for derived settings."""

    def test_max_part_size_unbounded_by_default(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.max_part_size == 2**63 - 1

    def test_max_part_size_follows_upload_cap(self) -> None:
        settings = Settings(_env_file=None, MAX_UPLOAD_BYTES=4096)
        assert settings.max_part_size == 4096

    def test_ensure_directories(self, temp_dir: Path) -> None:
        settings = Settings(_env_file=None, DATABASE_PATH=temp_dir / "a" / "b" / "programs.db")
        settings.ensure_directories()
        assert (temp_dir / "a" / "b").is_dir()

    def test_display_has_plain_values(self) -> None:
        display = Settings(_env_file=None).display()
        assert display["DUPLICATE_POLICY"] == "ignore"
        assert display["LOG_FILE"] is None
        assert isinstance(display["DATABASE_PATH"], str)


class TestSettingsCache:
    """Tests for settings caching."""

    def test_get_settings_is_cached(self, mock_env_vars: dict[str, str]) -> None:
        assert get_settings() is get_settings()

    def test_clear_settings_cache(self, mock_env_vars: dict[str, str]) -> None:
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
