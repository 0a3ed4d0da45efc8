"""DocVault blob store interface definition.

Provides the BlobStore interface that all storage backends must implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docvault.storage.models import BlobPayload, ShareLink, StoredBlob


class BlobStore(ABC):
    """Abstract base class for remote blob storage backends.

    Every method raises a classified BlobStoreError subclass on failure;
    transport exceptions never escape an implementation.

    Implementations:
    - DropboxBlobStore: Dropbox HTTP API v2 (production)
    - FilesystemBlobStore: Local filesystem (dev)
    - InMemoryBlobStore: Process memory (dev/test)
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability."""
        ...

    @abstractmethod
    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> StoredBlob:
        """Store a blob.

        Args:
            path: Requested blob path (e.g. "/documents/1700000000000-report.pdf").
            data: Blob content.
            content_type: Optional MIME type of the content.

        Returns:
            StoredBlob describing where the content landed.

        Raises:
            PathTraversalError: If the path is unsafe.
            BlobStoreError: If the write fails.
        """
        ...

    @abstractmethod
    async def get(self, path: str) -> BlobPayload:
        """Download a blob directly.

        Args:
            path: Blob path.

        Returns:
            Blob content in the backend's native representation.

        Raises:
            BlobNotFoundError: If no blob exists at the path.
            BlobResponseFormatError: If the response cannot be interpreted.
            BlobStoreError: For any other failure.
        """
        ...

    @abstractmethod
    async def get_temporary_link(self, path: str) -> str:
        """Issue a short-lived direct download URL for a blob.

        Raises:
            BlobOperationUnsupportedError: If the backend has no link support.
        """
        ...

    @abstractmethod
    async def create_share_link(self, path: str) -> ShareLink:
        """Create (or reuse) a public share URL that serves the raw bytes.

        ShareLink.created tells whether this call made the link.

        Raises:
            BlobOperationUnsupportedError: If the backend has no link support.
        """
        ...

    @abstractmethod
    async def revoke_share_link(self, url: str) -> None:
        """Revoke a share URL created by create_share_link."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a blob.

        Raises:
            BlobNotFoundError: If no blob exists at the path.
            BlobStoreError: For any other failure.
        """
        ...

    @abstractmethod
    async def check_connectivity(self) -> None:
        """Probe the backend with a cheap authenticated call.

        Raises:
            BlobStoreError: If the backend is unreachable or rejects credentials.
        """
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Release network resources held by the backend."""
