"""DocVault in-memory blob storage backend (dev/test)."""

from __future__ import annotations

import hashlib
import logging
import uuid
from pathlib import PurePosixPath

from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import BlobNotFoundError, BlobOperationUnsupportedError
from docvault.storage.models import ShareLink, StoredBlob

logger = logging.getLogger(__name__)


class InMemoryBlobStore(BlobStore):
    """Process-local blob store.

    Mirrors the Dropbox backend's autorename behavior so path collisions
    produce distinct blobs. Link operations are not available.
    """

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    def __contains__(self, path: object) -> bool:
        return path in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)

    def _free_path(self, path: str) -> str:
        if path not in self._blobs:
            return path
        pure = PurePosixPath(path)
        n = 1
        while True:
            candidate = str(pure.with_name(f"{pure.stem}-{n}{pure.suffix}"))
            if candidate not in self._blobs:
                return candidate
            n += 1

    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> StoredBlob:
        final_path = self._free_path(path)
        self._blobs[final_path] = bytes(data)
        logger.debug("Stored blob in memory: path=%s size=%d", final_path, len(data))
        return StoredBlob(
            path=final_path,
            blob_id=f"mem:{uuid.uuid4().hex}",
            name=PurePosixPath(final_path).name,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    async def get(self, path: str) -> bytes:
        try:
            return self._blobs[path]
        except KeyError:
            raise BlobNotFoundError(path=path) from None

    async def get_temporary_link(self, path: str) -> str:
        raise BlobOperationUnsupportedError(
            "Temporary links are not supported by the memory backend", path=path
        )

    async def create_share_link(self, path: str) -> ShareLink:
        raise BlobOperationUnsupportedError(
            "Share links are not supported by the memory backend", path=path
        )

    async def revoke_share_link(self, url: str) -> None:
        raise BlobOperationUnsupportedError("Share links are not supported by the memory backend")

    async def delete(self, path: str) -> None:
        if self._blobs.pop(path, None) is None:
            raise BlobNotFoundError(path=path)

    async def check_connectivity(self) -> None:
        return None
