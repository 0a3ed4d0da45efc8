"""Retrieval strategy resolver.

Downloads a blob by trying an ordered list of strategies:

1. Probe the store once. A failed probe aborts before any strategy runs.
2. Try each strategy in order, each under its own timeout.
3. A recoverable failure (the store answered in a shape we could not use)
   moves on to the next strategy. Any other failure (not found, auth, rate
   limit, transient, unsupported) is raised immediately.
4. A timed-out attempt abandons the whole chain as transient.
5. When every strategy failed recoverably, the last failure is raised.

Whatever representation a strategy returns is normalized to bytes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable, Sequence
from dataclasses import dataclass

import httpx

from docvault.retrieval.strategies import (
    DirectFetchStrategy,
    RetrievalStrategy,
    SharedLinkStrategy,
    TemporaryLinkStrategy,
)
from docvault.services.side_effects import SideEffectRunner
from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import (
    BlobConnectivityError,
    BlobResponseFormatError,
    BlobStoreError,
    BlobTransientError,
)
from docvault.storage.models import BlobPayload

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class RetrievedBlob:
    """Downloaded blob content.

    Attributes:
        content: Blob bytes.
        strategy: Name of the strategy that produced them.
    """

    content: bytes
    strategy: str


async def normalize_payload(payload: BlobPayload, *, path: str) -> bytes:
    """Turn any supported payload representation into bytes.

    Raises:
        BlobResponseFormatError: If the payload is of an unusable type.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, bytearray | memoryview):
        return bytes(payload)
    if isinstance(payload, str):
        raise BlobResponseFormatError("Blob content arrived as text", path=path)

    chunks: list[bytes] = []
    try:
        if isinstance(payload, AsyncIterable):
            async for chunk in payload:
                chunks.append(bytes(chunk))
        elif isinstance(payload, Iterable):
            for chunk in payload:
                chunks.append(bytes(chunk))
        else:
            raise BlobResponseFormatError(
                f"Unsupported blob content type: {type(payload).__name__}", path=path
            )
    except TypeError as e:
        raise BlobResponseFormatError("Blob content chunks are not bytes", path=path) from e
    return b"".join(chunks)


class RetrievalStrategyResolver:
    """Resilient multi-strategy blob download.

    Args:
        store: Blob store to read from.
        strategies: Ordered strategies. Defaults to direct, temporary link,
            shared link.
        http_client: Client used by the link strategies. Created (and owned)
            when omitted.
        side_effects: Runner for share-link revocation.
        attempt_timeout: Seconds allowed per strategy attempt.
    """

    def __init__(
        self,
        store: BlobStore,
        strategies: Sequence[RetrievalStrategy] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        side_effects: SideEffectRunner | None = None,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._owns_client = http_client is None and strategies is None
        self._http: httpx.AsyncClient | None = http_client
        if strategies is None:
            if self._http is None:
                self._http = httpx.AsyncClient(timeout=attempt_timeout)
            strategies = [
                DirectFetchStrategy(store),
                TemporaryLinkStrategy(store, self._http),
                SharedLinkStrategy(store, self._http, side_effects or SideEffectRunner()),
            ]
        if not strategies:
            raise ValueError("at least one retrieval strategy is required")
        self._strategies = list(strategies)
        self._attempt_timeout = attempt_timeout

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def probe(self) -> None:
        """Run the connectivity probe.

        Raises:
            BlobConnectivityError: Wrapping the classified probe failure.
        """
        try:
            await self._store.check_connectivity()
        except BlobStoreError as e:
            logger.warning("Blob store connectivity probe failed: %s", e)
            raise BlobConnectivityError(cause=e) from e

    async def fetch(self, blob_path: str) -> RetrievedBlob:
        """Download blob_path.

        Args:
            blob_path: Path of the blob in the store.

        Returns:
            RetrievedBlob with the bytes and the winning strategy name.

        Raises:
            BlobConnectivityError: If the probe failed.
            BlobTransientError: If an attempt timed out.
            BlobStoreError: The first terminal failure, or the last
                recoverable one when every strategy failed.
        """
        await self.probe()

        last_error: BlobStoreError | None = None
        for strategy in self._strategies:
            try:
                async with asyncio.timeout(self._attempt_timeout):
                    payload = await strategy.fetch(blob_path)
                    content = await normalize_payload(payload, path=blob_path)
            except TimeoutError as e:
                logger.warning(
                    "Retrieval strategy %s timed out after %.1fs for %s",
                    strategy.name,
                    self._attempt_timeout,
                    blob_path,
                )
                raise BlobTransientError(
                    f"Retrieval timed out using {strategy.name}", path=blob_path
                ) from e
            except BlobStoreError as e:
                if not e.recoverable:
                    raise
                logger.warning(
                    "Retrieval strategy %s failed recoverably for %s: %s",
                    strategy.name,
                    blob_path,
                    e,
                )
                last_error = e
                continue

            if last_error is not None:
                logger.info("Retrieved %s using fallback strategy %s", blob_path, strategy.name)
            return RetrievedBlob(content=content, strategy=strategy.name)

        raise last_error or BlobStoreError("No retrieval strategy succeeded", path=blob_path)

    async def aclose(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
