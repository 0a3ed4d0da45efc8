"""Document record model.

A DocumentRecord is one stored version of a logical file. Records sharing
(uploaded_by, base_file_name) form a version chain; every non-root record
points at the chain root through parent_document.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DESCRIPTION_MAX_LENGTH = 500


class AccessLevel(str, Enum):
    """Who may download a document."""

    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"


class DocumentCategory(str, Enum):
    """Coarse category derived from the mimetype at upload time."""

    DOCUMENT = "document"
    IMAGE = "image"
    PDF = "pdf"
    OTHER = "other"


def new_document_id() -> str:
    """Generate a document id (32 lowercase hex characters)."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


class VersionHistoryEntry(BaseModel):
    """One line of the denormalized version history cache."""

    model_config = ConfigDict(extra="forbid")

    version: Annotated[int, Field(ge=1)]
    document_id: str
    upload_date: datetime
    uploaded_by: str


class DocumentRecord(BaseModel):
    """Metadata for one stored document version.

    Attributes:
        document_id: Unique identifier.
        base_file_name: Logical identity key (original name minus extension).
        uploaded_by: Owner actor id.
        original_name: Filename as uploaded.
        stored_name: Object name assigned by the blob store.
        mime_type: Content type recorded at upload.
        size: Payload size in bytes.
        file_hash: SHA256 of the payload (hex).
        blob_path: Location in the remote store.
        blob_id: Remote object identifier.
        version: Position in the chain, starting at 1.
        is_latest_version: Whether this is the chain's current version.
        parent_document: Chain root id, None for the root itself.
        version_history: Cached view of the chain, see VersionChainManager.
        access_level: public, private or protected.
        access_pin: bcrypt hash of the PIN, set only for protected documents.
        download_count: Best-effort counter.
        category: Derived from mime_type.
        description: Free text.
        tags: Ordered, de-duplicated labels.
        created_at: Record creation time.
        updated_at: Last metadata change.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    document_id: str = Field(default_factory=new_document_id)
    base_file_name: Annotated[str, Field(min_length=1)]
    uploaded_by: Annotated[str, Field(min_length=1)]
    original_name: Annotated[str, Field(min_length=1)]
    stored_name: str
    mime_type: str
    size: Annotated[int, Field(ge=0)]
    file_hash: Annotated[str, Field(min_length=64, max_length=64)]
    blob_path: str
    blob_id: str
    version: Annotated[int, Field(ge=1)] = 1
    is_latest_version: bool = True
    parent_document: str | None = None
    version_history: list[VersionHistoryEntry] = Field(default_factory=list)
    access_level: AccessLevel = AccessLevel.PRIVATE
    access_pin: str | None = Field(default=None, repr=False)
    download_count: Annotated[int, Field(ge=0)] = 0
    category: DocumentCategory = DocumentCategory.OTHER
    description: Annotated[str, Field(max_length=DESCRIPTION_MAX_LENGTH)] = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        tags: list[str] = []
        for tag in value:
            cleaned = tag.strip()
            if cleaned and cleaned not in seen:
                seen.add(cleaned)
                tags.append(cleaned)
        return tags

    @property
    def chain_root_id(self) -> str:
        """Id of the version-1 ancestor (the record itself when it is the root)."""
        return self.parent_document or self.document_id

    @property
    def is_chain_root(self) -> bool:
        return self.parent_document is None

    def history_entry(self) -> VersionHistoryEntry:
        return VersionHistoryEntry(
            version=self.version,
            document_id=self.document_id,
            upload_date=self.created_at,
            uploaded_by=self.uploaded_by,
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize for API responses. The PIN hash is never included."""
        data = self.model_dump(mode="json", exclude={"access_pin"})
        data["has_pin"] = self.access_pin is not None
        return data
