"""Document routes for the DocVault API.

- POST   /v1/documents                       upload (multipart)
- GET    /v1/documents                       list / search
- GET    /v1/documents/{documentId}          metadata
- GET    /v1/documents/{documentId}/download bytes
- GET    /v1/documents/{documentId}/versions version chain
- POST   /v1/documents/{documentId}/verify-pin
- GET    /v1/documents/{documentId}/diagnostics
- DELETE /v1/documents/{documentId}

Every route requires an authenticated caller. Service errors propagate to
the DocVaultError handler registered in main.py.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any
from urllib.parse import quote

from fastapi import APIRouter, File, Form, Header, Query, Request, Response, UploadFile
from pydantic import BaseModel, ConfigDict

from docvault.api.auth import RequireCaller
from docvault.errors import FileTooLargeError
from docvault.models.document import DocumentRecord
from docvault.persistence.repositories.documents import MAX_PAGE_SIZE
from docvault.services.documents import DEFAULT_PAGE_SIZE, DocumentService

router = APIRouter(prefix="/v1/documents", tags=["Documents"])

PIN_HEADER = "X-Document-Pin"
STRATEGY_HEADER = "X-DocVault-Retrieval-Strategy"
INTEGRITY_HEADER = "X-DocVault-Integrity-Warning"


class DocumentListResponse(BaseModel):
    documents: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int


class VersionListResponse(BaseModel):
    versions: list[dict[str, Any]]


class VerifyPinRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pin: str | None = None


class VerifyPinResponse(BaseModel):
    verified: bool


class DeleteResponse(BaseModel):
    document_id: str
    blob_deleted: bool
    blob_error: str | None = None


class DiagnosticsResponse(BaseModel):
    document_id: str
    blob_path: str
    backend: str
    connectivity_ok: bool
    blob_readable: bool
    strategy: str | None = None
    size: int | None = None
    expected_size: int | None = None
    error: str | None = None
    details: dict[str, Any] = {}


def get_service(request: Request) -> DocumentService:
    """DocumentService attached to the app by create_app."""
    service: DocumentService = request.app.state.service
    return service


def _parse_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [tag for tag in (part.strip() for part in raw.split(",")) if tag]


def content_disposition(filename: str) -> str:
    """RFC 6266 attachment header value with a UTF-8 encoded filename."""
    return f"attachment; filename*=UTF-8''{quote(filename, safe='')}"


def _public(records: list[DocumentRecord]) -> list[dict[str, Any]]:
    return [record.to_public_dict() for record in records]


@router.post("", status_code=201)
async def upload_document(
    request: Request,
    caller: RequireCaller,
    document: Annotated[UploadFile, File()],
    access_level: Annotated[str | None, Form()] = None,
    access_pin: Annotated[str | None, Form()] = None,
    description: Annotated[str, Form()] = "",
    tags: Annotated[str | None, Form()] = None,
) -> dict[str, Any]:
    """Upload a document, or a new version when the owner already has one by that name.

    access_level has no default; a missing value is rejected like any other
    value outside public, private and protected.

    The body is read at most one byte past the configured limit so oversized
    uploads are rejected without buffering them whole.
    """
    service = get_service(request)
    max_bytes = service.max_upload_bytes
    content = await document.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise FileTooLargeError(len(content), max_bytes)

    record = await service.upload(
        caller.actor_id,
        content,
        document.filename or "",
        access_level or "",
        access_pin or None,
        mime_type=document.content_type,
        description=description,
        tags=_parse_tags(tags),
    )
    return record.to_public_dict()


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    request: Request,
    caller: RequireCaller,
    category: str | None = None,
    search: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
    show_all_versions: Annotated[bool, Query(alias="showAllVersions")] = False,
) -> DocumentListResponse:
    """List documents visible to the caller, newest first."""
    result = await get_service(request).list_documents(
        caller,
        category=category,
        search=search,
        page=page,
        limit=limit,
        include_all_versions=show_all_versions,
    )
    return DocumentListResponse(
        documents=_public(result.records),
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/{documentId}")
async def get_document(
    documentId: str,
    request: Request,
    caller: RequireCaller,
) -> dict[str, Any]:
    record = await get_service(request).get_document(documentId, caller)
    return record.to_public_dict()


@router.get("/{documentId}/download")
async def download_document(
    documentId: str,
    request: Request,
    caller: RequireCaller,
    pin: str | None = None,
    pin_header: Annotated[str | None, Header(alias=PIN_HEADER)] = None,
) -> Response:
    """Return the document bytes as an attachment.

    The PIN for protected documents comes from the `pin` query parameter or
    the X-Document-Pin header (the header wins when both are sent).
    """
    result = await get_service(request).download(documentId, caller, pin_header or pin)

    headers = {
        "Content-Disposition": content_disposition(result.filename),
        STRATEGY_HEADER: result.strategy,
    }
    if result.integrity_mismatch:
        headers[INTEGRITY_HEADER] = "size-mismatch"

    return Response(content=result.content, media_type=result.mime_type, headers=headers)


@router.get("/{documentId}/versions", response_model=VersionListResponse)
async def list_versions(
    documentId: str,
    request: Request,
    caller: RequireCaller,
) -> VersionListResponse:
    versions = await get_service(request).list_versions(documentId, caller)
    return VersionListResponse(versions=_public(versions))


@router.post("/{documentId}/verify-pin", response_model=VerifyPinResponse)
async def verify_pin(
    documentId: str,
    body: VerifyPinRequest,
    request: Request,
    caller: RequireCaller,
) -> VerifyPinResponse:
    """Check a PIN without downloading. A wrong or missing PIN is a 401."""
    verified = await get_service(request).verify_pin(documentId, body.pin)
    return VerifyPinResponse(verified=verified)


@router.get("/{documentId}/diagnostics", response_model=DiagnosticsResponse)
async def diagnose_document(
    documentId: str,
    request: Request,
    caller: RequireCaller,
) -> DiagnosticsResponse:
    """Probe the blob store and try reading this document's blob (owner/admin)."""
    report = await get_service(request).diagnose(documentId, caller)
    return DiagnosticsResponse(**asdict(report))


@router.delete("/{documentId}", response_model=DeleteResponse)
async def delete_document(
    documentId: str,
    request: Request,
    caller: RequireCaller,
) -> DeleteResponse:
    result = await get_service(request).delete(documentId, caller)
    return DeleteResponse(**asdict(result))
