"""DocVault blob storage data models."""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class StoredBlob:
    """Result of a successful blob write.

    Attributes:
        path: Final path of the blob. May differ from the requested path when
            the backend renames on conflict.
        blob_id: Backend identifier for the blob.
        name: Object name (last path segment).
        size_bytes: Size of the written content in bytes.
        sha256: SHA256 of the written content (hex string).
    """

    path: str
    blob_id: str
    name: str
    size_bytes: int
    sha256: str

    def to_dict(self) -> dict[str, str | int]:
        """Convert to dictionary for JSON serialization."""
        return {
            "path": self.path,
            "blob_id": self.blob_id,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "sha256": self.sha256,
        }


@dataclass(frozen=True)
class ShareLink:
    """A public share URL for a blob.

    Attributes:
        url: Direct-download URL.
        created: False when the backend handed back a link that already
            existed; such a link belongs to someone else and is not revoked.
    """

    url: str
    created: bool = True


BlobPayload = bytes | bytearray | memoryview | Iterable[bytes] | AsyncIterable[bytes]
"""Raw content as a backend hands it back. Retrieval normalizes it to bytes."""
