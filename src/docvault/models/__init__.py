"""DocVault domain models."""

from docvault.models.caller import CallerIdentity, Role
from docvault.models.document import (
    DESCRIPTION_MAX_LENGTH,
    AccessLevel,
    DocumentCategory,
    DocumentRecord,
    VersionHistoryEntry,
    new_document_id,
    utc_now,
)

__all__ = [
    "AccessLevel",
    "CallerIdentity",
    "DESCRIPTION_MAX_LENGTH",
    "DocumentCategory",
    "DocumentRecord",
    "Role",
    "VersionHistoryEntry",
    "new_document_id",
    "utc_now",
]
