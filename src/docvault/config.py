"""DocVault runtime configuration.

All settings come from environment variables and are validated once into an
immutable Settings object. Invalid values fail closed with ConfigError.

Environment Variables:
    DOCVAULT_BLOB_BACKEND: "filesystem", "memory" or "dropbox" (default: "filesystem")
    DOCVAULT_BLOB_BASE_DIR: Base directory for the filesystem backend
        (default: OS temp dir / docvault_blobs)
    DOCVAULT_DROPBOX_ACCESS_TOKEN: Dropbox API token (required for "dropbox")
    DOCVAULT_DATABASE_URL: SQLAlchemy async URL for the metadata store
        (unset: in-memory store)
    DOCVAULT_MAX_UPLOAD_BYTES: Upload size limit (default: 10 MiB)
    DOCVAULT_PIN_HASH_ROUNDS: bcrypt cost factor for PIN hashes (default: 10)
    DOCVAULT_FETCH_ATTEMPT_TIMEOUT_SECONDS: Per-strategy download timeout (default: 30)
    DOCVAULT_BLOB_TIMEOUT_SECONDS: HTTP timeout for blob store calls (default: 60)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

ENV_BLOB_BACKEND: Final[str] = "DOCVAULT_BLOB_BACKEND"
ENV_BLOB_BASE_DIR: Final[str] = "DOCVAULT_BLOB_BASE_DIR"
ENV_DROPBOX_ACCESS_TOKEN: Final[str] = "DOCVAULT_DROPBOX_ACCESS_TOKEN"
ENV_DATABASE_URL: Final[str] = "DOCVAULT_DATABASE_URL"
ENV_MAX_UPLOAD_BYTES: Final[str] = "DOCVAULT_MAX_UPLOAD_BYTES"
ENV_PIN_HASH_ROUNDS: Final[str] = "DOCVAULT_PIN_HASH_ROUNDS"
ENV_FETCH_ATTEMPT_TIMEOUT: Final[str] = "DOCVAULT_FETCH_ATTEMPT_TIMEOUT_SECONDS"
ENV_BLOB_TIMEOUT: Final[str] = "DOCVAULT_BLOB_TIMEOUT_SECONDS"

BLOB_BACKENDS: Final[frozenset[str]] = frozenset({"filesystem", "memory", "dropbox"})

DEFAULT_BLOB_BACKEND: Final[str] = "filesystem"
DEFAULT_MAX_UPLOAD_BYTES: Final[int] = 10 * 1024 * 1024
DEFAULT_PIN_HASH_ROUNDS: Final[int] = 10
DEFAULT_FETCH_ATTEMPT_TIMEOUT: Final[float] = 30.0
DEFAULT_BLOB_TIMEOUT: Final[float] = 60.0

MIN_PIN_HASH_ROUNDS: Final[int] = 4
MAX_PIN_HASH_ROUNDS: Final[int] = 15


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Validated DocVault configuration (immutable).

    Attributes:
        blob_backend: Which BlobStore implementation to build.
        blob_base_dir: Root directory for the filesystem backend.
        dropbox_access_token: Credential for the Dropbox backend.
        database_url: Metadata store URL, None for the in-memory store.
        max_upload_bytes: Largest accepted upload.
        pin_hash_rounds: bcrypt cost factor.
        fetch_attempt_timeout: Seconds allowed per retrieval strategy.
        blob_timeout: HTTP timeout for blob store calls.
    """

    blob_backend: str = DEFAULT_BLOB_BACKEND
    blob_base_dir: str | None = None
    dropbox_access_token: str | None = None
    database_url: str | None = None
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    pin_hash_rounds: int = DEFAULT_PIN_HASH_ROUNDS
    fetch_attempt_timeout: float = DEFAULT_FETCH_ATTEMPT_TIMEOUT
    blob_timeout: float = DEFAULT_BLOB_TIMEOUT

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.blob_backend not in BLOB_BACKENDS:
            raise ConfigError(
                f"{ENV_BLOB_BACKEND} must be one of {sorted(BLOB_BACKENDS)}, "
                f"got '{self.blob_backend}'"
            )
        if self.blob_backend == "dropbox" and not self.dropbox_access_token:
            raise ConfigError(f"{ENV_DROPBOX_ACCESS_TOKEN} is required for the dropbox backend")
        if self.max_upload_bytes <= 0:
            raise ConfigError(
                f"{ENV_MAX_UPLOAD_BYTES} must be a positive integer, got {self.max_upload_bytes}"
            )
        if not MIN_PIN_HASH_ROUNDS <= self.pin_hash_rounds <= MAX_PIN_HASH_ROUNDS:
            raise ConfigError(
                f"{ENV_PIN_HASH_ROUNDS} must be between {MIN_PIN_HASH_ROUNDS} and "
                f"{MAX_PIN_HASH_ROUNDS}, got {self.pin_hash_rounds}"
            )
        if self.fetch_attempt_timeout <= 0:
            raise ConfigError(
                f"{ENV_FETCH_ATTEMPT_TIMEOUT} must be positive, got {self.fetch_attempt_timeout}"
            )
        if self.blob_timeout <= 0:
            raise ConfigError(f"{ENV_BLOB_TIMEOUT} must be positive, got {self.blob_timeout}")

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url)

    def __repr__(self) -> str:
        token = "***" if self.dropbox_access_token else None
        return (
            f"Settings(blob_backend={self.blob_backend!r}, blob_base_dir={self.blob_base_dir!r}, "
            f"dropbox_access_token={token!r}, database_configured={self.database_configured}, "
            f"max_upload_bytes={self.max_upload_bytes}, pin_hash_rounds={self.pin_hash_rounds}, "
            f"fetch_attempt_timeout={self.fetch_attempt_timeout}, "
            f"blob_timeout={self.blob_timeout})"
        )


def _get_env_str(env_var: str) -> str | None:
    raw = os.environ.get(env_var)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_int(env_var: str, default: int) -> int:
    """Parse an integer from an environment variable.

    Raises:
        ConfigError: If the value is set but not an integer.
    """
    raw = _get_env_str(env_var)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be an integer, got '{raw}'") from e


def _parse_float(env_var: str, default: float) -> float:
    raw = _get_env_str(env_var)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be a number, got '{raw}'") from e


def load_settings() -> Settings:
    """Load settings from environment variables.

    Returns:
        Settings with validated values.

    Raises:
        ConfigError: If any value is invalid.
    """
    return Settings(
        blob_backend=(_get_env_str(ENV_BLOB_BACKEND) or DEFAULT_BLOB_BACKEND).lower(),
        blob_base_dir=_get_env_str(ENV_BLOB_BASE_DIR),
        dropbox_access_token=_get_env_str(ENV_DROPBOX_ACCESS_TOKEN),
        database_url=_get_env_str(ENV_DATABASE_URL),
        max_upload_bytes=_parse_int(ENV_MAX_UPLOAD_BYTES, DEFAULT_MAX_UPLOAD_BYTES),
        pin_hash_rounds=_parse_int(ENV_PIN_HASH_ROUNDS, DEFAULT_PIN_HASH_ROUNDS),
        fetch_attempt_timeout=_parse_float(
            ENV_FETCH_ATTEMPT_TIMEOUT, DEFAULT_FETCH_ATTEMPT_TIMEOUT
        ),
        blob_timeout=_parse_float(ENV_BLOB_TIMEOUT, DEFAULT_BLOB_TIMEOUT),
    )
