"""DocVault blob storage error types.

Every backend raises exactly one of these for a failed call. The failure
kind is a structural tag: retrieval code branches on ``recoverable``, never on
error message text.
"""

from __future__ import annotations

from enum import Enum


class BlobFailureKind(str, Enum):
    """Classification of a failed blob store call."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    INCOMPATIBLE_RESPONSE = "incompatible_response"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class BlobStoreError(Exception):
    """Base exception for blob store operations.

    Attributes:
        message: Human-readable error message.
        path: Blob path associated with the operation (if applicable).
        kind: Failure classification.
        status_code: HTTP status returned by a remote backend (if any).
    """

    kind: BlobFailureKind = BlobFailureKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.status_code = status_code

    @property
    def recoverable(self) -> bool:
        """True when a different retrieval strategy may succeed."""
        return self.kind == BlobFailureKind.INCOMPATIBLE_RESPONSE

    def __str__(self) -> str:
        parts = [self.message, f"kind={self.kind.value}"]
        if self.path:
            parts.append(f"path={self.path}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " ".join(parts)


class BlobNotFoundError(BlobStoreError):
    """The blob does not exist at the given path."""

    kind = BlobFailureKind.NOT_FOUND

    def __init__(
        self,
        message: str = "Blob not found",
        *,
        path: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, path=path, status_code=status_code)


class BlobAuthError(BlobStoreError):
    """Credentials were rejected by the remote store."""

    kind = BlobFailureKind.UNAUTHORIZED


class BlobRateLimitedError(BlobStoreError):
    """The remote store throttled the request.

    Attributes:
        retry_after: Seconds the store asked us to wait, if it said.
    """

    kind = BlobFailureKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limited by blob store",
        *,
        path: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, path=path, status_code=status_code)
        self.retry_after = retry_after


class BlobTransientError(BlobStoreError):
    """Network failure, timeout or 5xx from the remote store."""

    kind = BlobFailureKind.TRANSIENT


class BlobResponseFormatError(BlobStoreError):
    """The store answered, but in a shape this client cannot use.

    This is the only recoverable kind.
    """

    kind = BlobFailureKind.INCOMPATIBLE_RESPONSE


class BlobOperationUnsupportedError(BlobStoreError):
    """The backend does not implement the requested operation."""

    kind = BlobFailureKind.UNSUPPORTED


class PathTraversalError(BlobStoreError):
    """Raised when a blob path contains traversal sequences or unsafe characters."""

    kind = BlobFailureKind.UNKNOWN

    def __init__(
        self,
        message: str = "Invalid path: path traversal detected",
        *,
        path: str | None = None,
    ) -> None:
        super().__init__(message, path=path)


class BlobConnectivityError(BlobStoreError):
    """The connectivity probe failed before any retrieval was attempted.

    Attributes:
        cause: The classified error raised by the probe.
    """

    def __init__(
        self,
        message: str = "Blob store connectivity check failed",
        *,
        cause: BlobStoreError | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.kind = cause.kind
