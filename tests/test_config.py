"""Tests for DocVault settings loading and validation."""

from __future__ import annotations

import pytest

from docvault.config import (
    DEFAULT_MAX_UPLOAD_BYTES,
    DEFAULT_PIN_HASH_ROUNDS,
    ENV_BLOB_BACKEND,
    ENV_DATABASE_URL,
    ENV_DROPBOX_ACCESS_TOKEN,
    ENV_FETCH_ATTEMPT_TIMEOUT,
    ENV_MAX_UPLOAD_BYTES,
    ENV_PIN_HASH_ROUNDS,
    ConfigError,
    Settings,
    load_settings,
)


class TestLoadSettings:
    """Environment parsing."""

    def test_defaults_when_env_empty(self) -> None:
        """No DOCVAULT_* variables gives the filesystem backend and defaults."""
        settings = load_settings()

        assert settings.blob_backend == "filesystem"
        assert settings.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES
        assert settings.pin_hash_rounds == DEFAULT_PIN_HASH_ROUNDS
        assert settings.database_url is None
        assert settings.database_configured is False

    def test_backend_name_is_case_insensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """DOCVAULT_BLOB_BACKEND=MEMORY selects the memory backend."""
        monkeypatch.setenv(ENV_BLOB_BACKEND, "MEMORY")

        assert load_settings().blob_backend == "memory"

    def test_numeric_values_parsed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Integer and float variables are parsed."""
        monkeypatch.setenv(ENV_MAX_UPLOAD_BYTES, "2048")
        monkeypatch.setenv(ENV_PIN_HASH_ROUNDS, "6")
        monkeypatch.setenv(ENV_FETCH_ATTEMPT_TIMEOUT, "2.5")

        settings = load_settings()

        assert settings.max_upload_bytes == 2048
        assert settings.pin_hash_rounds == 6
        assert settings.fetch_attempt_timeout == 2.5

    def test_non_integer_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A non-integer upload limit fails closed."""
        monkeypatch.setenv(ENV_MAX_UPLOAD_BYTES, "ten megabytes")

        with pytest.raises(ConfigError, match=ENV_MAX_UPLOAD_BYTES):
            load_settings()

    def test_blank_values_treated_as_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Whitespace-only variables fall back to defaults."""
        monkeypatch.setenv(ENV_DATABASE_URL, "   ")

        assert load_settings().database_url is None

    def test_dropbox_requires_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The dropbox backend without a token is a configuration error."""
        monkeypatch.setenv(ENV_BLOB_BACKEND, "dropbox")

        with pytest.raises(ConfigError, match=ENV_DROPBOX_ACCESS_TOKEN):
            load_settings()


class TestSettingsValidation:
    """Settings.__post_init__ invariants."""

    def test_unknown_backend_rejected(self) -> None:
        """Only filesystem, memory and dropbox are accepted."""
        with pytest.raises(ConfigError):
            Settings(blob_backend="s3")

    @pytest.mark.parametrize("rounds", [3, 16])
    def test_pin_hash_rounds_bounded(self, rounds: int) -> None:
        """bcrypt cost outside 4..15 is rejected."""
        with pytest.raises(ConfigError):
            Settings(pin_hash_rounds=rounds)

    def test_non_positive_limits_rejected(self) -> None:
        """Upload limit and timeouts must be positive."""
        with pytest.raises(ConfigError):
            Settings(max_upload_bytes=0)
        with pytest.raises(ConfigError):
            Settings(fetch_attempt_timeout=0)
        with pytest.raises(ConfigError):
            Settings(blob_timeout=-1)

    def test_repr_masks_token(self) -> None:
        """The Dropbox token never appears in repr."""
        settings = Settings(blob_backend="dropbox", dropbox_access_token="sl.secret-token")

        assert "sl.secret-token" not in repr(settings)
        assert "***" in repr(settings)
