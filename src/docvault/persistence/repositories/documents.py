"""Documents repository.

Persists DocumentRecord rows and exposes the chain-level operations the
version manager needs (bulk latest flip, history fan-out, re-parenting).

Two implementations share the DocumentRepository protocol:
- SqlDocumentRepository: SQLAlchemy async Core over the documents table
- InMemoryDocumentRepository: dict-backed fallback for development/testing
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from docvault.errors import VersionConflictError
from docvault.models.document import (
    AccessLevel,
    DocumentCategory,
    DocumentRecord,
    VersionHistoryEntry,
    utc_now,
)
from docvault.persistence.schema import documents

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class DocumentQuery:
    """Filter, visibility and paging for document listings.

    Attributes:
        viewer_id: Restrict to documents this actor owns plus public and
            protected documents of others. None lifts the restriction (admin).
        category: Only documents of this category.
        search: Case-insensitive substring matched against original name,
            description, tags and base file name.
        latest_only: Only the latest version of each chain.
        offset: Rows to skip.
        limit: Maximum rows to return.
    """

    viewer_id: str | None = None
    category: DocumentCategory | None = None
    search: str | None = None
    latest_only: bool = True
    offset: int = 0
    limit: int = 10


class DocumentRepository(Protocol):
    """Async persistence operations for document records."""

    async def insert(self, record: DocumentRecord) -> None:
        """Insert a record.

        Raises:
            VersionConflictError: If (uploaded_by, base_file_name, version) is taken.
        """
        ...

    async def get(self, document_id: str) -> DocumentRecord | None: ...

    async def save(self, record: DocumentRecord) -> None:
        """Overwrite an existing record in one write. Unknown ids are ignored."""
        ...

    async def find_chain(self, uploaded_by: str, base_file_name: str) -> list[DocumentRecord]:
        """All versions for an identity key, highest version first."""
        ...

    async def find_by_version(
        self, uploaded_by: str, base_file_name: str, version: int
    ) -> DocumentRecord | None: ...

    async def mark_chain_not_latest(self, uploaded_by: str, base_file_name: str) -> list[str]:
        """Clear is_latest_version across a chain.

        Returns:
            Ids of the records that were latest before the call.
        """
        ...

    async def set_latest(self, document_id: str, is_latest: bool) -> None: ...

    async def push_history(self, document_ids: Sequence[str], entry: VersionHistoryEntry) -> None:
        """Append entry to each record's history unless already present."""
        ...

    async def pull_history(self, document_ids: Sequence[str], removed_id: str) -> None: ...

    async def replace_history(
        self, document_ids: Sequence[str], entries: Sequence[VersionHistoryEntry]
    ) -> None: ...

    async def find_chain_members(self, root_id: str) -> list[DocumentRecord]:
        """The root and every record whose parent is the root, highest version first."""
        ...

    async def repoint_parent(self, old_root_id: str, new_root_id: str) -> int:
        """Make new_root_id the chain root in place of old_root_id.

        Returns:
            Number of records re-pointed (the new root itself excluded).
        """
        ...

    async def increment_download_count(self, document_id: str) -> None: ...

    async def delete(self, document_id: str) -> bool: ...

    async def list(self, query: DocumentQuery) -> tuple[list[DocumentRecord], int]:
        """Return (page of records, total matching), newest first."""
        ...

    async def ping(self) -> None: ...

    async def aclose(self) -> None: ...


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _record_to_row(record: DocumentRecord) -> dict[str, Any]:
    row = record.model_dump(mode="python")
    row["access_level"] = record.access_level.value
    row["category"] = record.category.value
    row["version_history"] = [e.model_dump(mode="json") for e in record.version_history]
    return row


def _row_to_record(row: Any) -> DocumentRecord:
    data = dict(row._mapping)
    data["created_at"] = _as_utc(data["created_at"])
    data["updated_at"] = _as_utc(data["updated_at"])
    data["version_history"] = data.get("version_history") or []
    data["tags"] = data.get("tags") or []
    return DocumentRecord.model_validate(data)


def _history_rows(entries: Sequence[VersionHistoryEntry]) -> list[dict[str, Any]]:
    return [e.model_dump(mode="json") for e in entries]


class SqlDocumentRepository:
    """SQLAlchemy-backed document repository.

    Every public method runs in its own transaction on the given engine.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def aclose(self) -> None:
        await self._engine.dispose()

    async def insert(self, record: DocumentRecord) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.execute(documents.insert().values(**_record_to_row(record)))
        except IntegrityError as e:
            existing = await self.find_by_version(
                record.uploaded_by, record.base_file_name, record.version
            )
            if existing is not None:
                raise VersionConflictError(
                    record.uploaded_by, record.base_file_name, record.version
                ) from e
            raise

    async def get(self, document_id: str) -> DocumentRecord | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(
                    sa.select(documents).where(documents.c.document_id == document_id)
                )
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    async def save(self, record: DocumentRecord) -> None:
        values = _record_to_row(record)
        values.pop("document_id")
        values["updated_at"] = utc_now()
        async with self._engine.begin() as conn:
            await conn.execute(
                documents.update()
                .where(documents.c.document_id == record.document_id)
                .values(**values)
            )

    async def find_chain(self, uploaded_by: str, base_file_name: str) -> list[DocumentRecord]:
        stmt = (
            sa.select(documents)
            .where(
                documents.c.uploaded_by == uploaded_by,
                documents.c.base_file_name == base_file_name,
            )
            .order_by(documents.c.version.desc())
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).fetchall()
        return [_row_to_record(r) for r in rows]

    async def find_by_version(
        self, uploaded_by: str, base_file_name: str, version: int
    ) -> DocumentRecord | None:
        stmt = sa.select(documents).where(
            documents.c.uploaded_by == uploaded_by,
            documents.c.base_file_name == base_file_name,
            documents.c.version == version,
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).fetchone()
        return _row_to_record(row) if row is not None else None

    async def mark_chain_not_latest(self, uploaded_by: str, base_file_name: str) -> list[str]:
        chain_filter = (
            documents.c.uploaded_by == uploaded_by,
            documents.c.base_file_name == base_file_name,
            documents.c.is_latest_version.is_(True),
        )
        async with self._engine.begin() as conn:
            ids = (
                await conn.execute(sa.select(documents.c.document_id).where(*chain_filter))
            ).scalars().all()
            if ids:
                await conn.execute(
                    documents.update()
                    .where(documents.c.document_id.in_(ids))
                    .values(is_latest_version=False, updated_at=utc_now())
                )
        return list(ids)

    async def set_latest(self, document_id: str, is_latest: bool) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                documents.update()
                .where(documents.c.document_id == document_id)
                .values(is_latest_version=is_latest, updated_at=utc_now())
            )

    async def _rewrite_history(
        self,
        conn: AsyncConnection,
        document_ids: Sequence[str],
        rewrite: Any,
    ) -> None:
        rows = (
            await conn.execute(
                sa.select(documents.c.document_id, documents.c.version_history).where(
                    documents.c.document_id.in_(list(document_ids))
                )
            )
        ).fetchall()
        for row in rows:
            history = list(row.version_history or [])
            updated = rewrite(history)
            if updated != history:
                await conn.execute(
                    documents.update()
                    .where(documents.c.document_id == row.document_id)
                    .values(version_history=updated)
                )

    async def push_history(self, document_ids: Sequence[str], entry: VersionHistoryEntry) -> None:
        item = entry.model_dump(mode="json")

        def _append(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
            if any(h.get("document_id") == entry.document_id for h in history):
                return history
            return [*history, item]

        async with self._engine.begin() as conn:
            await self._rewrite_history(conn, document_ids, _append)

    async def pull_history(self, document_ids: Sequence[str], removed_id: str) -> None:
        def _remove(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
            return [h for h in history if h.get("document_id") != removed_id]

        async with self._engine.begin() as conn:
            await self._rewrite_history(conn, document_ids, _remove)

    async def replace_history(
        self, document_ids: Sequence[str], entries: Sequence[VersionHistoryEntry]
    ) -> None:
        if not document_ids:
            return
        async with self._engine.begin() as conn:
            await conn.execute(
                documents.update()
                .where(documents.c.document_id.in_(list(document_ids)))
                .values(version_history=_history_rows(entries))
            )

    async def find_chain_members(self, root_id: str) -> list[DocumentRecord]:
        stmt = (
            sa.select(documents)
            .where(
                sa.or_(
                    documents.c.document_id == root_id,
                    documents.c.parent_document == root_id,
                )
            )
            .order_by(documents.c.version.desc())
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).fetchall()
        return [_row_to_record(r) for r in rows]

    async def repoint_parent(self, old_root_id: str, new_root_id: str) -> int:
        now = utc_now()
        async with self._engine.begin() as conn:
            await conn.execute(
                documents.update()
                .where(documents.c.document_id == new_root_id)
                .values(parent_document=None, updated_at=now)
            )
            result = await conn.execute(
                documents.update()
                .where(
                    documents.c.parent_document == old_root_id,
                    documents.c.document_id != new_root_id,
                )
                .values(parent_document=new_root_id, updated_at=now)
            )
        return result.rowcount or 0

    async def increment_download_count(self, document_id: str) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                documents.update()
                .where(documents.c.document_id == document_id)
                .values(download_count=documents.c.download_count + 1)
            )

    async def delete(self, document_id: str) -> bool:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                documents.delete().where(documents.c.document_id == document_id)
            )
        return (result.rowcount or 0) > 0

    def _tag_matches(self, term: str) -> Any:
        """EXISTS over the elements of the tags JSON array.

        Matching the serialized JSON text would hit quotes, brackets and
        escaped non-ASCII characters, so each tag is unnested first.
        """
        if self._engine.dialect.name == "sqlite":
            elements = sa.func.json_each(documents.c.tags)
        else:
            elements = sa.func.json_array_elements_text(documents.c.tags)
        tag = elements.table_valued(sa.column("value", sa.String)).alias("tag")
        return sa.exists(
            sa.select(1)
            .select_from(tag)
            .where(sa.func.lower(tag.c.value).contains(term, autoescape=True))
        )

    def _filters(self, query: DocumentQuery) -> list[Any]:
        filters: list[Any] = []
        if query.viewer_id is not None:
            filters.append(
                sa.or_(
                    documents.c.uploaded_by == query.viewer_id,
                    documents.c.access_level.in_(
                        [AccessLevel.PUBLIC.value, AccessLevel.PROTECTED.value]
                    ),
                )
            )
        if query.latest_only:
            filters.append(documents.c.is_latest_version.is_(True))
        if query.category is not None:
            filters.append(documents.c.category == query.category.value)
        if query.search:
            term = query.search.lower()
            filters.append(
                sa.or_(
                    sa.func.lower(documents.c.original_name).contains(term, autoescape=True),
                    sa.func.lower(documents.c.description).contains(term, autoescape=True),
                    sa.func.lower(documents.c.base_file_name).contains(term, autoescape=True),
                    self._tag_matches(term),
                )
            )
        return filters

    async def list(self, query: DocumentQuery) -> tuple[list[DocumentRecord], int]:
        filters = self._filters(query)
        limit = min(max(1, query.limit), MAX_PAGE_SIZE)
        page_stmt = (
            sa.select(documents)
            .where(*filters)
            .order_by(documents.c.created_at.desc(), documents.c.document_id.desc())
            .offset(max(0, query.offset))
            .limit(limit)
        )
        count_stmt = sa.select(sa.func.count()).select_from(documents).where(*filters)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(page_stmt)).fetchall()
            total = (await conn.execute(count_stmt)).scalar_one()
        return [_row_to_record(r) for r in rows], int(total)

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(sa.text("SELECT 1"))


def _matches(record: DocumentRecord, query: DocumentQuery) -> bool:
    if query.viewer_id is not None and not (
        record.uploaded_by == query.viewer_id
        or record.access_level in (AccessLevel.PUBLIC, AccessLevel.PROTECTED)
    ):
        return False
    if query.latest_only and not record.is_latest_version:
        return False
    if query.category is not None and record.category != query.category:
        return False
    if query.search:
        term = query.search.lower()
        haystacks = [record.original_name, record.description, record.base_file_name, *record.tags]
        if not any(term in h.lower() for h in haystacks):
            return False
    return True


class InMemoryDocumentRepository:
    """In-memory fallback repository for when no database is configured.

    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, DocumentRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def _copy(self, record: DocumentRecord) -> DocumentRecord:
        return record.model_copy(deep=True)

    async def insert(self, record: DocumentRecord) -> None:
        for existing in self._records.values():
            if (
                existing.uploaded_by == record.uploaded_by
                and existing.base_file_name == record.base_file_name
                and existing.version == record.version
            ):
                raise VersionConflictError(
                    record.uploaded_by, record.base_file_name, record.version
                )
        self._records[record.document_id] = self._copy(record)

    async def get(self, document_id: str) -> DocumentRecord | None:
        record = self._records.get(document_id)
        return self._copy(record) if record is not None else None

    async def save(self, record: DocumentRecord) -> None:
        if record.document_id in self._records:
            stored = self._copy(record)
            stored.updated_at = utc_now()
            self._records[record.document_id] = stored

    async def find_chain(self, uploaded_by: str, base_file_name: str) -> list[DocumentRecord]:
        chain = [
            r
            for r in self._records.values()
            if r.uploaded_by == uploaded_by and r.base_file_name == base_file_name
        ]
        chain.sort(key=lambda r: r.version, reverse=True)
        return [self._copy(r) for r in chain]

    async def find_by_version(
        self, uploaded_by: str, base_file_name: str, version: int
    ) -> DocumentRecord | None:
        for r in self._records.values():
            if (
                r.uploaded_by == uploaded_by
                and r.base_file_name == base_file_name
                and r.version == version
            ):
                return self._copy(r)
        return None

    async def mark_chain_not_latest(self, uploaded_by: str, base_file_name: str) -> list[str]:
        flipped: list[str] = []
        now = utc_now()
        for r in self._records.values():
            if (
                r.uploaded_by == uploaded_by
                and r.base_file_name == base_file_name
                and r.is_latest_version
            ):
                r.is_latest_version = False
                r.updated_at = now
                flipped.append(r.document_id)
        return flipped

    async def set_latest(self, document_id: str, is_latest: bool) -> None:
        record = self._records.get(document_id)
        if record is not None:
            record.is_latest_version = is_latest
            record.updated_at = utc_now()

    async def push_history(self, document_ids: Sequence[str], entry: VersionHistoryEntry) -> None:
        for document_id in document_ids:
            record = self._records.get(document_id)
            if record is None:
                continue
            if any(h.document_id == entry.document_id for h in record.version_history):
                continue
            record.version_history = [*record.version_history, entry.model_copy()]

    async def pull_history(self, document_ids: Sequence[str], removed_id: str) -> None:
        for document_id in document_ids:
            record = self._records.get(document_id)
            if record is not None:
                record.version_history = [
                    h for h in record.version_history if h.document_id != removed_id
                ]

    async def replace_history(
        self, document_ids: Sequence[str], entries: Sequence[VersionHistoryEntry]
    ) -> None:
        for document_id in document_ids:
            record = self._records.get(document_id)
            if record is not None:
                record.version_history = [e.model_copy() for e in entries]

    async def find_chain_members(self, root_id: str) -> list[DocumentRecord]:
        members = [
            r
            for r in self._records.values()
            if r.document_id == root_id or r.parent_document == root_id
        ]
        members.sort(key=lambda r: r.version, reverse=True)
        return [self._copy(r) for r in members]

    async def repoint_parent(self, old_root_id: str, new_root_id: str) -> int:
        now = utc_now()
        new_root = self._records.get(new_root_id)
        if new_root is not None:
            new_root.parent_document = None
            new_root.updated_at = now
        count = 0
        for r in self._records.values():
            if r.parent_document == old_root_id and r.document_id != new_root_id:
                r.parent_document = new_root_id
                r.updated_at = now
                count += 1
        return count

    async def increment_download_count(self, document_id: str) -> None:
        record = self._records.get(document_id)
        if record is not None:
            record.download_count += 1

    async def delete(self, document_id: str) -> bool:
        return self._records.pop(document_id, None) is not None

    async def list(self, query: DocumentQuery) -> tuple[list[DocumentRecord], int]:
        matching = [r for r in self._records.values() if _matches(r, query)]
        matching.sort(key=lambda r: (r.created_at, r.document_id), reverse=True)
        limit = min(max(1, query.limit), MAX_PAGE_SIZE)
        offset = max(0, query.offset)
        page = matching[offset : offset + limit]
        return [self._copy(r) for r in page], len(matching)

    async def ping(self) -> None:
        return None

    async def aclose(self) -> None:
        return None


def create_repository(database_url: str | None) -> DocumentRepository:
    """Factory to get the appropriate documents repository.

    Returns a SQL repository if a database URL is configured, otherwise the
    in-memory fallback.
    """
    if database_url:
        from docvault.persistence.db import create_engine

        return SqlDocumentRepository(create_engine(database_url))
    logger.warning("No metadata database configured; using in-memory document repository")
    return InMemoryDocumentRepository()
