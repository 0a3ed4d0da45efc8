"""Pytest configuration and fixtures for DocVault tests.

Services are wired with in-memory backends and the minimum bcrypt cost so
PIN hashing stays fast.
"""

from __future__ import annotations

import pytest

from docvault.config import MIN_PIN_HASH_ROUNDS, Settings
from docvault.models.caller import CallerIdentity, Role
from docvault.persistence.repositories.documents import InMemoryDocumentRepository
from docvault.services.documents import DocumentService
from docvault.storage.memory_store import InMemoryBlobStore


@pytest.fixture(autouse=True)
def clear_docvault_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's DOCVAULT_* environment out of every test."""
    for name in (
        "DOCVAULT_BLOB_BACKEND",
        "DOCVAULT_BLOB_BASE_DIR",
        "DOCVAULT_DROPBOX_ACCESS_TOKEN",
        "DOCVAULT_DATABASE_URL",
        "DOCVAULT_MAX_UPLOAD_BYTES",
        "DOCVAULT_PIN_HASH_ROUNDS",
        "DOCVAULT_FETCH_ATTEMPT_TIMEOUT_SECONDS",
        "DOCVAULT_BLOB_TIMEOUT_SECONDS",
        "DOCVAULT_API_KEYS_JSON",
        "DOCVAULT_OTEL_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        blob_backend="memory",
        pin_hash_rounds=MIN_PIN_HASH_ROUNDS,
        max_upload_bytes=64 * 1024,
        fetch_attempt_timeout=5.0,
    )


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def service(
    settings: Settings,
    blob_store: InMemoryBlobStore,
    repository: InMemoryDocumentRepository,
) -> DocumentService:
    return DocumentService.from_settings(settings, store=blob_store, repository=repository)


@pytest.fixture
def alice() -> CallerIdentity:
    return CallerIdentity(actor_id="alice")


@pytest.fixture
def bob() -> CallerIdentity:
    return CallerIdentity(actor_id="bob")


@pytest.fixture
def admin() -> CallerIdentity:
    return CallerIdentity(actor_id="root", role=Role.ADMIN)
