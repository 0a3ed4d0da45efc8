"""Upload classification helpers.

File-type allowlist, category derivation, identity-key derivation and blob
path construction.
"""

from __future__ import annotations

import mimetypes
import re
import time
from pathlib import PurePath

from docvault.models.document import DocumentCategory

ALLOWED_EXTENSIONS: frozenset[str] = frozenset(
    {"jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt", "xlsx", "xls", "ppt", "pptx"}
)

ALLOWED_MIME_TYPES: frozenset[str] = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/pjpeg",
        "image/png",
        "image/gif",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    }
)

DEFAULT_MIME_TYPE = "application/octet-stream"
BLOB_FOLDER = "/documents"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_BLOB_NAME_LENGTH = 200


def file_extension(filename: str) -> str:
    """Lowercased extension without the dot ("" when there is none)."""
    return PurePath(filename).suffix.lower().lstrip(".")


def base_file_name(filename: str) -> str:
    """Identity key for version chains: the filename minus its extension.

    "report.v2.pdf" -> "report.v2"; ".env" -> ".env".
    """
    name = PurePath(filename).name
    stem = PurePath(name).stem
    return stem or name


def resolve_mime_type(filename: str, declared: str | None) -> str:
    """Declared content type, or a guess from the extension."""
    if declared:
        return declared.split(";", 1)[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_MIME_TYPE


def is_allowed_file_type(filename: str, mime_type: str) -> bool:
    """Both the extension and the content type must be on the allowlist."""
    return file_extension(filename) in ALLOWED_EXTENSIONS and mime_type in ALLOWED_MIME_TYPES


def categorize(mime_type: str) -> DocumentCategory:
    """Derive the document category from its content type."""
    if mime_type.startswith("image/"):
        return DocumentCategory.IMAGE
    if mime_type == "application/pdf":
        return DocumentCategory.PDF
    if "document" in mime_type or "text" in mime_type:
        return DocumentCategory.DOCUMENT
    return DocumentCategory.OTHER


def safe_blob_name(filename: str) -> str:
    """Reduce a user-supplied filename to characters every backend accepts."""
    name = PurePath(filename.replace("\\", "/")).name
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name).strip("._") or "file"
    return cleaned[-_MAX_BLOB_NAME_LENGTH:]


def build_blob_path(filename: str, *, now_ms: int | None = None) -> str:
    """Blob path for a new upload: /documents/<epoch-ms>-<safe name>."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{BLOB_FOLDER}/{timestamp}-{safe_blob_name(filename)}"
