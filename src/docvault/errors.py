"""DocVault service error taxonomy.

Every failure that crosses the DocumentService boundary is one of these
types. Blob store and database errors are classified and re-raised as a
member of this hierarchy; raw transport errors never leak to callers.

Hierarchy:
    DocVaultError
    ├── ValidationError            (rejected input, no side effects)
    ├── NotFoundError              (document record or blob absent)
    ├── AccessDeniedError          (carries the DenyReason)
    ├── StorageError               (remote store and metadata write failures)
    └── VersionConflictError       (unique version constraint violated)
"""

from __future__ import annotations

from typing import Any

from docvault.access.decision import DenyReason


class DocVaultError(Exception):
    """Base exception for DocVault operations.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        details: Optional safe context for callers (never secrets).
    """

    code = "docvault_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DocVaultError):
    """Request rejected before any side effect."""

    code = "validation_error"


class InvalidAccessLevelError(ValidationError):
    code = "invalid_access_level"

    def __init__(self, access_level: object) -> None:
        super().__init__(
            "Invalid access level",
            details={"access_level": str(access_level)},
        )


class PinTooShortError(ValidationError):
    code = "pin_too_short"

    def __init__(self, min_length: int) -> None:
        super().__init__(
            f"Protected documents require a PIN of at least {min_length} characters",
            details={"min_length": min_length},
        )


class MalformedDocumentIdError(ValidationError):
    code = "invalid_document_id"

    def __init__(self, document_id: str) -> None:
        super().__init__("Invalid document ID", details={"document_id": document_id})


class EmptyUploadError(ValidationError):
    code = "empty_upload"

    def __init__(self) -> None:
        super().__init__("Uploaded file is empty")


class FileTooLargeError(ValidationError):
    code = "file_too_large"

    def __init__(self, size: int, max_bytes: int) -> None:
        super().__init__(
            f"File exceeds the {max_bytes} byte upload limit",
            details={"size": size, "max_bytes": max_bytes},
        )


class UnsupportedFileTypeError(ValidationError):
    code = "unsupported_file_type"

    def __init__(self, filename: str, mime_type: str) -> None:
        super().__init__(
            "Invalid file type. Only images, PDFs, and documents are allowed.",
            details={"filename": filename, "mime_type": mime_type},
        )


class NotFoundError(DocVaultError):
    """Document record or blob does not exist. Never retried."""

    code = "not_found"


class DocumentNotFoundError(NotFoundError):
    code = "document_not_found"

    def __init__(self, document_id: str) -> None:
        super().__init__("Document not found", details={"document_id": document_id})
        self.document_id = document_id


class BlobMissingError(NotFoundError):
    """The record exists but its blob is gone from the remote store."""

    code = "blob_not_found"

    def __init__(self, document_id: str) -> None:
        super().__init__("File not found in storage", details={"document_id": document_id})
        self.document_id = document_id


class AccessDeniedError(DocVaultError):
    """Caller may not perform the operation.

    The reason distinguishes "need a PIN" from "wrong PIN" from "not owner"
    so the HTTP layer can prompt for a PIN where appropriate.
    """

    code = "access_denied"

    def __init__(self, reason: DenyReason, message: str | None = None) -> None:
        super().__init__(
            message or _DENY_MESSAGES.get(reason, "Access denied"),
            details={"reason": reason.value, "requires_pin": reason.requires_pin},
        )
        self.reason = reason

    @property
    def requires_pin(self) -> bool:
        return self.reason.requires_pin


_DENY_MESSAGES: dict[DenyReason, str] = {
    DenyReason.PIN_REQUIRED: "PIN required",
    DenyReason.INVALID_PIN: "Invalid PIN",
    DenyReason.PRIVATE_FORBIDDEN: "Access denied",
    DenyReason.NOT_OWNER: "Access denied",
}


class StorageError(DocVaultError):
    """Remote object store failure, already classified."""

    code = "storage_error"


class StorageTransientError(StorageError):
    """Rate limit, network blip or exhausted retrieval strategies.

    The caller may retry the whole operation later.
    """

    code = "storage_unavailable"

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        details: dict[str, Any] = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details=details)
        self.retry_after = retry_after


class StorageAuthError(StorageError):
    """Remote credentials expired or invalid. A configuration problem."""

    code = "storage_auth_failed"


class StorageConnectivityError(StorageError):
    """Connectivity probe against the remote store failed."""

    code = "storage_unreachable"


class UploadStorageError(StorageError):
    """Blob write failed; no metadata was persisted."""

    code = "upload_storage_failed"


class MetadataStoreError(StorageError):
    """Metadata write failed after the blob was stored."""

    code = "metadata_store_failed"


class EmptyPayloadError(StorageError):
    """Remote store returned zero bytes for an existing document."""

    code = "empty_payload"

    def __init__(self, document_id: str) -> None:
        super().__init__(
            "Empty file received from storage",
            details={"document_id": document_id},
        )


class VersionConflictError(DocVaultError):
    """Another writer already took (owner, base name, version)."""

    code = "version_conflict"

    def __init__(self, uploaded_by: str, base_file_name: str, version: int) -> None:
        super().__init__(
            "Version already exists for this document chain",
            details={"base_file_name": base_file_name, "version": version},
        )
        self.uploaded_by = uploaded_by
        self.base_file_name = base_file_name
        self.version = version
