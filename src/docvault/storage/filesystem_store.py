"""DocVault filesystem blob storage backend.

Provides local filesystem storage for development with:
- Path traversal protection
- Atomic temp-file writes
- SHA256 content hashing
- Dropbox-style autorename when the target path is taken

Link operations are not available; downloads from this backend always use
direct fetch.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import tempfile
import uuid
from pathlib import Path, PurePosixPath

from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import (
    BlobNotFoundError,
    BlobOperationUnsupportedError,
    BlobStoreError,
    PathTraversalError,
)
from docvault.storage.models import ShareLink, StoredBlob
from docvault.storage.tracing import traced_blob_operation

logger = logging.getLogger(__name__)

_SAFE_PATH_PATTERN = re.compile(r"^[a-zA-Z0-9_\-./]+$")

_MAX_RENAME_ATTEMPTS = 1000


def _is_path_traversal(relative: str) -> bool:
    """Check if a (leading-slash stripped) blob path is unsafe.

    Detects:
    - ".." segments
    - Home or drive-letter prefixes
    - Backslashes and null bytes
    - Characters outside the safe set
    """
    if not relative:
        return True
    if "\x00" in relative or "\\" in relative:
        return True
    if relative.startswith("/") or relative.startswith("~"):
        return True
    if len(relative) >= 2 and relative[1] == ":":
        return True
    if any(segment in ("..", "") for segment in relative.split("/")):
        return True
    return not _SAFE_PATH_PATTERN.match(relative)


def _compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FilesystemBlobStore(BlobStore):
    """Filesystem-based blob storage.

    Blob "/documents/1700000000000-report.pdf" lives at
    {base_dir}/documents/1700000000000-report.pdf.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        """Initialize filesystem storage.

        Args:
            base_dir: Base directory for storage. If None, uses the OS temp
                directory.
        """
        if base_dir is None:
            base_dir = Path(tempfile.gettempdir()) / "docvault_blobs"
        self._base_dir = Path(base_dir).resolve()
        logger.debug("FilesystemBlobStore initialized with base_dir=%s", self._base_dir)

    @property
    def backend_name(self) -> str:
        return "filesystem"

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _resolve(self, path: str) -> Path:
        """Map a blob path to a file under base_dir, rejecting unsafe paths."""
        relative = path[1:] if path.startswith("/") else path
        if _is_path_traversal(relative):
            raise PathTraversalError(
                message="Invalid path: path traversal or unsafe characters detected",
                path=path,
            )
        target = (self._base_dir / relative).resolve()
        try:
            target.relative_to(self._base_dir)
        except ValueError as e:
            raise PathTraversalError(
                message="Path resolves outside storage base directory",
                path=path,
            ) from e
        return target

    def _free_target(self, target: Path) -> Path:
        """Return target, or the first "name-n.ext" sibling that does not exist."""
        if not target.exists():
            return target
        for n in range(1, _MAX_RENAME_ATTEMPTS):
            candidate = target.with_name(f"{target.stem}-{n}{target.suffix}")
            if not candidate.exists():
                return candidate
        raise BlobStoreError("No free name for blob", path=str(target.name))

    def _write(self, path: str, data: bytes) -> StoredBlob:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Failed to create blob directory: {e}", path=path) from e

        target = self._free_target(target)
        tmp_file = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_file.write_bytes(data)
            tmp_file.replace(target)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise BlobStoreError(f"Failed to write blob: {e}", path=path) from e

        final_path = "/" + PurePosixPath(target.relative_to(self._base_dir)).as_posix()
        return StoredBlob(
            path=final_path,
            blob_id=f"fs:{uuid.uuid4().hex}",
            name=target.name,
            size_bytes=len(data),
            sha256=_compute_sha256(data),
        )

    def _read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path=path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob: {e}", path=path) from e

    def _remove(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path=path)
        try:
            target.unlink()
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob: {e}", path=path) from e

    @traced_blob_operation("put")
    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> StoredBlob:
        stored = await asyncio.to_thread(self._write, path, data)
        logger.debug("Stored blob: path=%s sha256=%s", stored.path, stored.sha256)
        return stored

    @traced_blob_operation("get")
    async def get(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read, path)

    async def get_temporary_link(self, path: str) -> str:
        raise BlobOperationUnsupportedError(
            "Temporary links are not supported by the filesystem backend", path=path
        )

    async def create_share_link(self, path: str) -> ShareLink:
        raise BlobOperationUnsupportedError(
            "Share links are not supported by the filesystem backend", path=path
        )

    async def revoke_share_link(self, url: str) -> None:
        raise BlobOperationUnsupportedError(
            "Share links are not supported by the filesystem backend"
        )

    @traced_blob_operation("delete")
    async def delete(self, path: str) -> None:
        await asyncio.to_thread(self._remove, path)
        logger.debug("Deleted blob: path=%s", path)

    async def check_connectivity(self) -> None:
        def _probe() -> None:
            try:
                self._base_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise BlobStoreError(f"Blob directory unavailable: {e}") from e

        await asyncio.to_thread(_probe)
