"""HTTP failure classification shared by the Dropbox client and link fetches."""

from __future__ import annotations

import json
from typing import Any

import httpx

from docvault.storage.errors import (
    BlobAuthError,
    BlobNotFoundError,
    BlobRateLimitedError,
    BlobStoreError,
    BlobTransientError,
)


def _parse_retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            return None
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict) and isinstance(error.get("retry_after"), int | float):
            return float(error["retry_after"])
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _error_summary(response: httpx.Response) -> str:
    """Best-effort extraction of Dropbox's ``error_summary`` field."""
    try:
        payload: Any = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text[:200]
    if isinstance(payload, dict):
        summary = payload.get("error_summary")
        if isinstance(summary, str):
            return summary
    return ""


def classify_response(response: httpx.Response, *, path: str | None = None) -> BlobStoreError:
    """Map a non-2xx response to a classified BlobStoreError.

    Args:
        response: The failed response.
        path: Blob path the call was about, for error context.

    Returns:
        The error to raise.
    """
    status = response.status_code
    if status in (401, 403):
        return BlobAuthError("Blob store rejected credentials", path=path, status_code=status)
    if status == 404:
        return BlobNotFoundError(path=path, status_code=status)
    if status == 409:
        summary = _error_summary(response)
        if "not_found" in summary:
            return BlobNotFoundError(path=path, status_code=status)
        return BlobStoreError(f"Blob store conflict: {summary}", path=path, status_code=status)
    if status == 429:
        return BlobRateLimitedError(
            path=path,
            status_code=status,
            retry_after=_parse_retry_after(response),
        )
    if status >= 500:
        return BlobTransientError(
            f"Blob store server error (HTTP {status})", path=path, status_code=status
        )
    return BlobStoreError(
        f"Unexpected HTTP {status} from blob store", path=path, status_code=status
    )


def classify_transport_error(exc: httpx.HTTPError, *, path: str | None = None) -> BlobStoreError:
    """Map an httpx transport failure (timeout, connection reset) to a transient error."""
    if isinstance(exc, httpx.TimeoutException):
        return BlobTransientError("Blob store request timed out", path=path)
    return BlobTransientError(f"Blob store request failed: {type(exc).__name__}", path=path)
