"""Version chain manager.

A version chain is every record sharing (uploaded_by, base_file_name).
Version 1 is the root; every later version points at the root through
parent_document. Exactly one record per chain carries is_latest_version
once an operation completes.

Uploads and deletes on one chain are serialized in-process by a per-chain
asyncio.Lock. Across processes the unique (uploaded_by, base_file_name,
version) constraint rejects the loser, which re-resolves and retries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from docvault.errors import VersionConflictError
from docvault.models.document import DocumentRecord, VersionHistoryEntry, utc_now
from docvault.persistence.repositories.documents import DocumentRepository

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_ATTEMPTS = 5

ChainKey = tuple[str, str]


@dataclass(frozen=True)
class VersionAssignment:
    """Where a new upload lands in its chain.

    Attributes:
        version: Version number for the new record.
        parent_document_id: Chain root id, None when the upload starts a chain.
        previous_ids: Ids of the records already in the chain, highest version first.
        history: History entries of the existing chain, lowest version first.
    """

    version: int
    parent_document_id: str | None
    previous_ids: tuple[str, ...] = ()
    history: tuple[VersionHistoryEntry, ...] = field(default=())


class ChainLockRegistry:
    """One asyncio.Lock per chain key, dropped when nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[ChainKey, asyncio.Lock] = {}
        self._users: dict[ChainKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: ChainKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class VersionChainManager:
    """Version resolution, latest-flag maintenance and history upkeep.

    Args:
        repository: Metadata store.
        max_attempts: Commit attempts before a VersionConflictError is surfaced.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        *,
        max_attempts: int = DEFAULT_COMMIT_ATTEMPTS,
    ) -> None:
        self._repo = repository
        self._max_attempts = max_attempts
        self._locks = ChainLockRegistry()

    @property
    def locks(self) -> ChainLockRegistry:
        return self._locks

    async def resolve_version(self, owner_id: str, base_file_name: str) -> VersionAssignment:
        """Compute the next version number and chain root for an upload.

        Args:
            owner_id: Uploading actor.
            base_file_name: Identity key derived from the filename.

        Returns:
            VersionAssignment. (1, None) when no chain exists yet.
        """
        chain = await self._repo.find_chain(owner_id, base_file_name)
        if not chain:
            return VersionAssignment(version=1, parent_document_id=None)
        newest = chain[0]
        return VersionAssignment(
            version=newest.version + 1,
            parent_document_id=newest.parent_document or newest.document_id,
            previous_ids=tuple(r.document_id for r in chain),
            history=tuple(r.history_entry() for r in reversed(chain)),
        )

    async def commit_new_version(self, record: DocumentRecord) -> DocumentRecord:
        """Place record at the head of its chain and persist it.

        The record's version, parent_document, is_latest_version and
        version_history are assigned here. Earlier versions lose their latest
        flag before the insert; if the insert fails the highest remaining
        version gets it back.

        Args:
            record: Draft record with every other field populated.

        Returns:
            The committed record.

        Raises:
            VersionConflictError: If every attempt lost a race with another writer.
        """
        key = (record.uploaded_by, record.base_file_name)
        async with self._locks.hold(key):
            for attempt in range(1, self._max_attempts + 1):
                assignment = await self.resolve_version(*key)
                record.version = assignment.version
                record.parent_document = assignment.parent_document_id
                record.is_latest_version = True
                record.version_history = list(assignment.history)
                record.updated_at = utc_now()

                flipped = await self._repo.mark_chain_not_latest(*key)
                try:
                    await self._repo.insert(record)
                except VersionConflictError:
                    logger.info(
                        "Version %d of chain %s/%s taken by another writer (attempt %d/%d)",
                        assignment.version,
                        record.uploaded_by,
                        record.base_file_name,
                        attempt,
                        self._max_attempts,
                    )
                    continue
                except Exception:
                    if flipped:
                        await self._restore_latest(*key)
                    raise

                logger.debug(
                    "Committed version %d of chain %s/%s as %s",
                    record.version,
                    record.uploaded_by,
                    record.base_file_name,
                    record.document_id,
                )
                return record

            await self._restore_latest(*key)
            raise VersionConflictError(record.uploaded_by, record.base_file_name, record.version)

    async def _restore_latest(self, owner_id: str, base_file_name: str) -> None:
        """Give the latest flag back to the highest version in the chain."""
        chain = await self._repo.find_chain(owner_id, base_file_name)
        if not chain:
            return
        if not any(r.is_latest_version for r in chain):
            await self._repo.set_latest(chain[0].document_id, True)
            logger.warning(
                "Restored latest flag on %s after failed commit to chain %s/%s",
                chain[0].document_id,
                owner_id,
                base_file_name,
            )

    async def append_history(self, record: DocumentRecord) -> None:
        """Fan out record's history entry to the root, its children and itself.

        Best-effort: history is a cache rebuilt from parent_document/version
        traversal, so failures are logged and swallowed.
        """
        entry = record.history_entry()
        root_id = record.chain_root_id
        try:
            async with self._locks.hold((record.uploaded_by, record.base_file_name)):
                members = await self._repo.find_chain_members(root_id)
                targets = {root_id, record.document_id, *(m.document_id for m in members)}
                await self._repo.push_history(sorted(targets), entry)
        except Exception as e:
            logger.warning(
                "Failed to update version history for %s: %s", record.document_id, e
            )

    async def detach(self, record: DocumentRecord) -> None:
        """Repair the chain around a record that is about to be deleted.

        - If the record is the latest, the highest remaining version becomes latest.
        - If the record is the root, the lowest remaining version becomes the
          root and every other member is re-pointed to it.
        - The record's history entry is pruned from the remaining members.
        """
        members = await self._repo.find_chain_members(record.chain_root_id)
        remaining = [m for m in members if m.document_id != record.document_id]
        if not remaining:
            return

        if record.is_latest_version:
            promoted = max(remaining, key=lambda m: m.version)
            await self._repo.set_latest(promoted.document_id, True)
            logger.info(
                "Promoted version %d (%s) to latest after removing %s",
                promoted.version,
                promoted.document_id,
                record.document_id,
            )

        if record.is_chain_root:
            new_root = min(remaining, key=lambda m: m.version)
            moved = await self._repo.repoint_parent(record.document_id, new_root.document_id)
            logger.info(
                "Promoted version %d (%s) to chain root; re-pointed %d records",
                new_root.version,
                new_root.document_id,
                moved,
            )
            await self.rebuild_history(new_root.document_id, exclude=record.document_id)
            return

        try:
            await self._repo.pull_history(
                [m.document_id for m in remaining], record.document_id
            )
        except Exception as e:
            logger.warning(
                "Failed to prune version history for %s: %s", record.document_id, e
            )

    async def remove(self, record: DocumentRecord) -> bool:
        """Detach and delete a record while holding its chain lock.

        The record is re-read under the lock so the latest flag reflects any
        upload that committed after the caller loaded it.

        Returns:
            False if the record was already gone.
        """
        async with self._locks.hold((record.uploaded_by, record.base_file_name)):
            current = await self._repo.get(record.document_id)
            if current is None:
                return False
            await self.detach(current)
            return await self._repo.delete(current.document_id)

    async def list_chain(self, record: DocumentRecord) -> list[DocumentRecord]:
        """All versions in record's chain, highest version first."""
        return await self._repo.find_chain_members(record.chain_root_id)

    async def rebuild_history(self, root_id: str, *, exclude: str | None = None) -> None:
        """Recompute version_history from traversal and rewrite it on every member."""
        try:
            members = [
                m for m in await self._repo.find_chain_members(root_id) if m.document_id != exclude
            ]
            entries = [m.history_entry() for m in sorted(members, key=lambda m: m.version)]
            await self._repo.replace_history([m.document_id for m in members], entries)
        except Exception as e:
            logger.warning("Failed to rebuild version history for chain %s: %s", root_id, e)
