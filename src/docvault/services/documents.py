"""Document service.

Orchestrates the document lifecycle over injected collaborators:

    upload   validate -> hash -> classify -> store blob -> commit version -> history
    download lookup -> authorize -> resolve bytes -> count (background)
    delete   lookup -> authorize owner -> delete blob (best-effort) -> detach -> remove

Validation and access checks run before any blob call. Blob store failures
are classified and re-raised as the docvault.errors taxonomy; raw transport
errors never cross this boundary.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from docvault.access.decision import AccessDecision, DenyReason
from docvault.access.evaluator import MIN_PIN_LENGTH, AccessControlEvaluator
from docvault.config import Settings
from docvault.errors import (
    AccessDeniedError,
    BlobMissingError,
    DocumentNotFoundError,
    EmptyPayloadError,
    EmptyUploadError,
    FileTooLargeError,
    InvalidAccessLevelError,
    MalformedDocumentIdError,
    MetadataStoreError,
    PinTooShortError,
    StorageAuthError,
    StorageConnectivityError,
    StorageError,
    StorageTransientError,
    UnsupportedFileTypeError,
    UploadStorageError,
    ValidationError,
    VersionConflictError,
)
from docvault.models.caller import CallerIdentity
from docvault.models.document import (
    DESCRIPTION_MAX_LENGTH,
    AccessLevel,
    DocumentCategory,
    DocumentRecord,
)
from docvault.persistence.repositories.documents import (
    MAX_PAGE_SIZE,
    DocumentQuery,
    DocumentRepository,
    create_repository,
)
from docvault.retrieval.resolver import RetrievalStrategyResolver
from docvault.services.classification import (
    base_file_name,
    build_blob_path,
    categorize,
    is_allowed_file_type,
    resolve_mime_type,
)
from docvault.services.side_effects import SideEffectRunner
from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import (
    BlobAuthError,
    BlobConnectivityError,
    BlobNotFoundError,
    BlobRateLimitedError,
    BlobStoreError,
)
from docvault.storage.factory import create_blob_store
from docvault.versioning.chain import VersionChainManager

logger = logging.getLogger(__name__)

_DOCUMENT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class DownloadResult:
    """Bytes and content metadata for a successful download.

    Attributes:
        content: Blob bytes.
        mime_type: Content type recorded at upload.
        filename: Original filename, for Content-Disposition.
        size: Length of content in bytes.
        strategy: Retrieval strategy that produced the bytes.
        integrity_mismatch: True when size differs from the recorded size.
    """

    content: bytes
    mime_type: str
    filename: str
    size: int
    strategy: str
    integrity_mismatch: bool = False


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a delete.

    Attributes:
        document_id: The removed record.
        blob_deleted: Whether the blob is known to be gone.
        blob_error: Classified blob failure message when the blob delete failed.
    """

    document_id: str
    blob_deleted: bool
    blob_error: str | None = None


@dataclass(frozen=True)
class DocumentPage:
    records: list[DocumentRecord]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass(frozen=True)
class DiagnosticsReport:
    """Store reachability and blob readability for one document."""

    document_id: str
    blob_path: str
    backend: str
    connectivity_ok: bool
    blob_readable: bool
    strategy: str | None = None
    size: int | None = None
    expected_size: int | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def validate_document_id(document_id: str) -> str:
    """Reject ids that could not have been issued by this service.

    Raises:
        MalformedDocumentIdError: If the id is not 32 lowercase hex characters.
    """
    if not _DOCUMENT_ID_PATTERN.match(document_id):
        raise MalformedDocumentIdError(document_id)
    return document_id


def _require(decision: AccessDecision) -> None:
    if not decision.granted:
        raise AccessDeniedError(decision.reason or DenyReason.PRIVATE_FORBIDDEN)


def _map_blob_error(error: BlobStoreError, document_id: str) -> StorageError | BlobMissingError:
    """Translate a classified blob failure into the service taxonomy."""
    if isinstance(error, BlobConnectivityError):
        cause = error.cause
        if isinstance(cause, BlobAuthError):
            logger.error("Blob store rejected credentials during connectivity probe")
            return StorageAuthError("Storage authentication failed")
        return StorageConnectivityError("Storage is unreachable")
    if isinstance(error, BlobNotFoundError):
        return BlobMissingError(document_id)
    if isinstance(error, BlobAuthError):
        logger.error("Blob store rejected credentials for document %s", document_id)
        return StorageAuthError("Storage authentication failed")
    if isinstance(error, BlobRateLimitedError):
        return StorageTransientError(
            "Storage rate limit exceeded, retry later", retry_after=error.retry_after
        )
    return StorageTransientError("Storage temporarily unavailable")


class DocumentService:
    """Upload, download, delete and listing of versioned documents.

    Args:
        store: Remote blob store.
        repository: Metadata store.
        resolver: Multi-strategy blob reader.
        evaluator: Access decisions and PIN hashing.
        chains: Version chain manager.
        side_effects: Runner for fire-and-forget work.
        settings: Limits (upload size).
    """

    def __init__(
        self,
        *,
        store: BlobStore,
        repository: DocumentRepository,
        resolver: RetrievalStrategyResolver,
        evaluator: AccessControlEvaluator,
        chains: VersionChainManager,
        side_effects: SideEffectRunner,
        settings: Settings,
    ) -> None:
        self._store = store
        self._repo = repository
        self._resolver = resolver
        self._evaluator = evaluator
        self._chains = chains
        self._side_effects = side_effects
        self._settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: BlobStore | None = None,
        repository: DocumentRepository | None = None,
    ) -> DocumentService:
        """Wire a service from configuration.

        Args:
            settings: Validated settings.
            store: Override the configured blob store.
            repository: Override the configured metadata store.
        """
        if store is None:
            store = create_blob_store(settings)
        if repository is None:
            repository = create_repository(settings.database_url)
        side_effects = SideEffectRunner()
        return cls(
            store=store,
            repository=repository,
            resolver=RetrievalStrategyResolver(
                store,
                side_effects=side_effects,
                attempt_timeout=settings.fetch_attempt_timeout,
            ),
            evaluator=AccessControlEvaluator(settings.pin_hash_rounds),
            chains=VersionChainManager(repository),
            side_effects=side_effects,
            settings=settings,
        )

    @property
    def store(self) -> BlobStore:
        return self._store

    @property
    def repository(self) -> DocumentRepository:
        return self._repo

    @property
    def side_effects(self) -> SideEffectRunner:
        return self._side_effects

    @property
    def max_upload_bytes(self) -> int:
        return self._settings.max_upload_bytes

    async def aclose(self) -> None:
        """Finish background work and release network clients and connections."""
        await self._side_effects.drain()
        await self._resolver.aclose()
        await self._store.aclose()
        await self._repo.aclose()

    def _validate_upload(
        self,
        content: bytes,
        original_name: str,
        access_level: AccessLevel | str,
        pin: str | None,
        mime_type: str,
        description: str,
    ) -> AccessLevel:
        try:
            level = AccessLevel(access_level)
        except ValueError:
            raise InvalidAccessLevelError(access_level) from None

        if level == AccessLevel.PROTECTED and (not pin or len(pin) < MIN_PIN_LENGTH):
            raise PinTooShortError(MIN_PIN_LENGTH)
        if not original_name or not original_name.strip():
            raise ValidationError("Uploaded file has no name")
        if not content:
            raise EmptyUploadError()
        if len(content) > self._settings.max_upload_bytes:
            raise FileTooLargeError(len(content), self._settings.max_upload_bytes)
        if not is_allowed_file_type(original_name, mime_type):
            raise UnsupportedFileTypeError(original_name, mime_type)
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description exceeds {DESCRIPTION_MAX_LENGTH} characters",
                details={"max_length": DESCRIPTION_MAX_LENGTH},
            )
        return level

    async def upload(
        self,
        owner_id: str,
        content: bytes,
        original_name: str,
        access_level: AccessLevel | str,
        pin: str | None = None,
        *,
        mime_type: str | None = None,
        description: str = "",
        tags: Iterable[str] = (),
    ) -> DocumentRecord:
        """Store a new document, or a new version of an existing one.

        Args:
            owner_id: Uploading actor.
            content: File bytes.
            original_name: Filename as supplied by the client.
            access_level: public, private or protected.
            pin: Required (>= 4 characters) for protected documents.
            mime_type: Declared content type. Guessed from the name when omitted.
            description: Free text (<= 500 characters).
            tags: Labels; blanks and duplicates are dropped.

        Returns:
            The committed DocumentRecord.

        Raises:
            ValidationError: Input rejected; nothing was written.
            UploadStorageError: Blob write failed; no record was written.
            MetadataStoreError: Blob stored but the record could not be written.
            VersionConflictError: Lost every retry against concurrent writers.
        """
        resolved_mime = resolve_mime_type(original_name, mime_type)
        level = self._validate_upload(
            content, original_name, access_level, pin, resolved_mime, description
        )

        file_hash = hashlib.sha256(content).hexdigest()
        category = categorize(resolved_mime)
        pin_hash = (
            await asyncio.to_thread(self._evaluator.hash_pin, pin)
            if level == AccessLevel.PROTECTED and pin
            else None
        )

        try:
            stored = await self._store.put(
                build_blob_path(original_name), content, content_type=resolved_mime
            )
        except BlobStoreError as e:
            if isinstance(e, BlobAuthError):
                logger.error("Blob store rejected credentials during upload of %s", original_name)
            else:
                logger.warning("Blob upload failed for %s: %s", original_name, e)
            raise UploadStorageError(
                "Failed to store file", details={"kind": e.kind.value}
            ) from e

        draft = DocumentRecord(
            base_file_name=base_file_name(original_name),
            uploaded_by=owner_id,
            original_name=original_name,
            stored_name=stored.name,
            mime_type=resolved_mime,
            size=len(content),
            file_hash=file_hash,
            blob_path=stored.path,
            blob_id=stored.blob_id,
            access_level=level,
            access_pin=pin_hash,
            category=category,
            description=description,
            tags=list(tags),
        )

        try:
            record = await self._chains.commit_new_version(draft)
        except VersionConflictError:
            logger.error(
                "Version conflict after blob upload; orphaned blob at %s", stored.path
            )
            raise
        except Exception as e:
            logger.error(
                "Metadata write failed after blob upload; orphaned blob at %s", stored.path
            )
            raise MetadataStoreError("Failed to record document metadata") from e

        await self._chains.append_history(record)
        logger.info(
            "Uploaded %s as %s (version %d, %d bytes, %s)",
            original_name,
            record.document_id,
            record.version,
            record.size,
            record.access_level.value,
        )
        return await self._repo.get(record.document_id) or record

    async def _load(self, document_id: str) -> DocumentRecord:
        validate_document_id(document_id)
        record = await self._repo.get(document_id)
        if record is None:
            raise DocumentNotFoundError(document_id)
        return record

    async def download(
        self,
        document_id: str,
        caller: CallerIdentity | None,
        pin: str | None = None,
    ) -> DownloadResult:
        """Authorize and fetch a document's bytes.

        Raises:
            MalformedDocumentIdError: Id could not have been issued.
            DocumentNotFoundError: No such record.
            AccessDeniedError: Denied; reason says whether a PIN would help.
            BlobMissingError: Record exists but its blob is gone.
            StorageAuthError: Remote credentials rejected.
            StorageConnectivityError: Connectivity probe failed.
            StorageTransientError: Rate limit, timeout or exhausted strategies.
            EmptyPayloadError: The store returned zero bytes.
        """
        record = await self._load(document_id)
        decision = await asyncio.to_thread(self._evaluator.evaluate, record, caller, pin)
        _require(decision)

        try:
            retrieved = await self._resolver.fetch(record.blob_path)
        except BlobStoreError as e:
            raise _map_blob_error(e, document_id) from e

        content = retrieved.content
        if not content:
            logger.warning("Empty payload received for %s from %s", document_id, record.blob_path)
            raise EmptyPayloadError(document_id)

        mismatch = len(content) != record.size
        if mismatch:
            logger.warning(
                "Integrity warning for %s: expected %d bytes, received %d",
                document_id,
                record.size,
                len(content),
            )

        self._side_effects.schedule(
            "increment_download_count", self._repo.increment_download_count(document_id)
        )
        return DownloadResult(
            content=content,
            mime_type=record.mime_type,
            filename=record.original_name,
            size=len(content),
            strategy=retrieved.strategy,
            integrity_mismatch=mismatch,
        )

    async def delete(self, document_id: str, caller: CallerIdentity | None) -> DeleteResult:
        """Remove a document version, its blob and its place in the chain.

        Only the owner or an admin may delete; a PIN never grants delete.
        A blob that is already gone counts as deleted. Any other blob failure
        is reported in the result and metadata cleanup still proceeds.
        """
        record = await self._load(document_id)
        _require(self._evaluator.authorize_owner(record, caller))

        blob_deleted = True
        blob_error: str | None = None
        try:
            await self._store.delete(record.blob_path)
        except BlobNotFoundError:
            logger.info("Blob for %s already absent at %s", document_id, record.blob_path)
        except BlobStoreError as e:
            blob_deleted = False
            blob_error = f"{e.kind.value}: {e.message}"
            if isinstance(e, BlobAuthError):
                logger.error("Blob store rejected credentials deleting %s", record.blob_path)
            else:
                logger.warning("Blob delete failed for %s: %s", document_id, e)

        if not await self._chains.remove(record):
            logger.info("Document %s was removed concurrently", document_id)
        logger.info(
            "Deleted document %s (version %d of %s)",
            document_id,
            record.version,
            record.base_file_name,
        )
        return DeleteResult(
            document_id=document_id, blob_deleted=blob_deleted, blob_error=blob_error
        )

    async def list_versions(
        self, document_id: str, caller: CallerIdentity | None
    ) -> list[DocumentRecord]:
        """Every version in the document's chain, highest first (owner/admin only)."""
        record = await self._load(document_id)
        _require(self._evaluator.authorize_owner(record, caller))
        return await self._chains.list_chain(record)

    async def list_documents(
        self,
        caller: CallerIdentity,
        *,
        category: DocumentCategory | str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        include_all_versions: bool = False,
    ) -> DocumentPage:
        """Paginated listing with role-based visibility.

        Admins see everything. Everyone else sees their own documents plus
        public and protected documents of others.
        """
        if category in (None, "", "all"):
            category_filter = None
        else:
            try:
                category_filter = DocumentCategory(category)
            except ValueError:
                raise ValidationError(
                    "Invalid category", details={"category": str(category)}
                ) from None

        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        query = DocumentQuery(
            viewer_id=None if caller.is_admin else caller.actor_id,
            category=category_filter,
            search=search.strip() if search and search.strip() else None,
            latest_only=not include_all_versions,
            offset=(page - 1) * limit,
            limit=limit,
        )
        records, total = await self._repo.list(query)
        return DocumentPage(
            records=records,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    async def get_document(self, document_id: str, caller: CallerIdentity) -> DocumentRecord:
        """Metadata for one document, under listing visibility rules."""
        record = await self._load(document_id)
        if (
            record.access_level == AccessLevel.PRIVATE
            and not caller.is_admin
            and not caller.owns(record.uploaded_by)
        ):
            raise AccessDeniedError(DenyReason.PRIVATE_FORBIDDEN)
        return record

    async def verify_pin(self, document_id: str, pin: str | None) -> bool:
        """Check a PIN against a protected document without downloading it.

        Raises:
            ValidationError: The document is not protected.
            AccessDeniedError: PIN missing or wrong.
        """
        record = await self._load(document_id)
        if record.access_level != AccessLevel.PROTECTED:
            raise ValidationError(
                "Document is not PIN protected", details={"document_id": document_id}
            )
        decision = await asyncio.to_thread(self._evaluator.evaluate, record, None, pin)
        _require(decision)
        return True

    async def diagnose(self, document_id: str, caller: CallerIdentity) -> DiagnosticsReport:
        """Probe the store and try reading the document's blob, without raising.

        Owner/admin only. The download counter is not touched.
        """
        record = await self._load(document_id)
        _require(self._evaluator.authorize_owner(record, caller))

        backend = self._store.backend_name
        try:
            await self._resolver.probe()
        except BlobConnectivityError as e:
            return DiagnosticsReport(
                document_id=document_id,
                blob_path=record.blob_path,
                backend=backend,
                connectivity_ok=False,
                blob_readable=False,
                expected_size=record.size,
                error=str(e.cause or e),
            )

        try:
            retrieved = await self._resolver.fetch(record.blob_path)
        except BlobStoreError as e:
            return DiagnosticsReport(
                document_id=document_id,
                blob_path=record.blob_path,
                backend=backend,
                connectivity_ok=True,
                blob_readable=False,
                expected_size=record.size,
                error=str(e),
                details={"kind": e.kind.value},
            )

        return DiagnosticsReport(
            document_id=document_id,
            blob_path=record.blob_path,
            backend=backend,
            connectivity_ok=True,
            blob_readable=bool(retrieved.content),
            strategy=retrieved.strategy,
            size=len(retrieved.content),
            expected_size=record.size,
        )
