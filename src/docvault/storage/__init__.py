"""DocVault blob storage.

Async access to the remote object store holding document bytes, with every
failure classified into a tagged taxonomy (see errors.BlobFailureKind).

Backends:
- DropboxBlobStore: Dropbox HTTP API v2 (production)
- FilesystemBlobStore: Local filesystem (dev)
- InMemoryBlobStore: Process memory (dev/test)
"""

from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import (
    BlobAuthError,
    BlobConnectivityError,
    BlobFailureKind,
    BlobNotFoundError,
    BlobOperationUnsupportedError,
    BlobRateLimitedError,
    BlobResponseFormatError,
    BlobStoreError,
    BlobTransientError,
    PathTraversalError,
)
from docvault.storage.models import BlobPayload, ShareLink, StoredBlob

__all__ = [
    "BlobAuthError",
    "BlobConnectivityError",
    "BlobFailureKind",
    "BlobNotFoundError",
    "BlobOperationUnsupportedError",
    "BlobPayload",
    "BlobRateLimitedError",
    "BlobResponseFormatError",
    "BlobStore",
    "BlobStoreError",
    "BlobTransientError",
    "PathTraversalError",
    "ShareLink",
    "StoredBlob",
]
