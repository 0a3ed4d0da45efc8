"""Blob retrieval strategies.

Each strategy is one way of getting a blob's bytes out of the remote store:

- DirectFetchStrategy: the store's own download call
- TemporaryLinkStrategy: a short-lived link fetched with plain HTTP
- SharedLinkStrategy: a public share link fetched with plain HTTP, revoked
  afterwards in the background
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from docvault.services.side_effects import SideEffectRunner
from docvault.storage.blob_store import BlobStore
from docvault.storage.http_status import classify_response, classify_transport_error
from docvault.storage.models import BlobPayload

logger = logging.getLogger(__name__)


class RetrievalStrategy(Protocol):
    """One way to download a blob."""

    name: str

    async def fetch(self, path: str) -> BlobPayload: ...


async def fetch_url(client: httpx.AsyncClient, url: str, *, path: str) -> bytes:
    """GET a link and return its body, classifying failures like the store does.

    Args:
        client: HTTP client used for the download.
        url: Link to fetch. Never logged (it grants access).
        path: Blob path the link points at, for error context.

    Raises:
        BlobStoreError: Classified failure.
    """
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise classify_transport_error(e, path=path) from e
    if response.status_code >= 400:
        raise classify_response(response, path=path)
    return response.content


class DirectFetchStrategy:
    name = "direct"

    def __init__(self, store: BlobStore) -> None:
        self._store = store

    async def fetch(self, path: str) -> BlobPayload:
        return await self._store.get(path)


class TemporaryLinkStrategy:
    name = "temporary_link"

    def __init__(self, store: BlobStore, http_client: httpx.AsyncClient) -> None:
        self._store = store
        self._http = http_client

    async def fetch(self, path: str) -> BlobPayload:
        link = await self._store.get_temporary_link(path)
        return await fetch_url(self._http, link, path=path)


class SharedLinkStrategy:
    """Download through a public share link.

    The link is revoked after the download whether or not it succeeded. The
    revocation runs as a side effect, so its failure is logged and never
    affects the download result.
    """

    name = "shared_link"

    def __init__(
        self,
        store: BlobStore,
        http_client: httpx.AsyncClient,
        side_effects: SideEffectRunner,
    ) -> None:
        self._store = store
        self._http = http_client
        self._side_effects = side_effects

    async def fetch(self, path: str) -> BlobPayload:
        link = await self._store.create_share_link(path)
        try:
            return await fetch_url(self._http, link.url, path=path)
        finally:
            if link.created:
                self._side_effects.schedule(
                    "revoke_share_link", self._store.revoke_share_link(link.url)
                )
