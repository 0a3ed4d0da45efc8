"""Blob store construction from settings."""

from __future__ import annotations

import logging

from docvault.config import ConfigError, Settings
from docvault.storage.blob_store import BlobStore
from docvault.storage.dropbox_store import DropboxBlobStore
from docvault.storage.filesystem_store import FilesystemBlobStore
from docvault.storage.memory_store import InMemoryBlobStore

logger = logging.getLogger(__name__)


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the BlobStore selected by DOCVAULT_BLOB_BACKEND.

    Raises:
        ConfigError: If the backend is unknown or lacks required settings.
    """
    backend = settings.blob_backend
    if backend == "dropbox":
        if not settings.dropbox_access_token:
            raise ConfigError("Dropbox backend requires an access token")
        store: BlobStore = DropboxBlobStore(
            settings.dropbox_access_token,
            timeout_seconds=settings.blob_timeout,
        )
    elif backend == "filesystem":
        store = FilesystemBlobStore(settings.blob_base_dir)
    elif backend == "memory":
        store = InMemoryBlobStore()
    else:
        raise ConfigError(f"Unknown blob backend: {backend}")

    logger.info("Blob store backend: %s", store.backend_name)
    return store
