"""Dropbox blob storage backend.

Talks to the Dropbox HTTP API v2 through an injected httpx.AsyncClient.
Every failure is classified into the BlobStoreError taxonomy:

    401/403                       -> unauthorized
    409 with not_found summary    -> not_found
    other 409                     -> unknown
    429                           -> rate_limited (Retry-After honored)
    5xx, timeouts, transport      -> transient
    2xx that cannot be decoded    -> incompatible_response (recoverable)
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import PurePosixPath
from typing import Any

import httpx

from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import BlobFailureKind, BlobResponseFormatError, BlobStoreError
from docvault.storage.http_status import classify_response, classify_transport_error
from docvault.storage.models import ShareLink, StoredBlob
from docvault.storage.tracing import traced_blob_operation

logger = logging.getLogger(__name__)

DROPBOX_API_URL = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_URL = "https://content.dropboxapi.com/2"
DROPBOX_API_RESULT_HEADER = "Dropbox-API-Result"
DROPBOX_DEFAULT_TIMEOUT_SECONDS = 60.0

_SHARE_HOST = "www.dropbox.com"
_DIRECT_SHARE_HOST = "dl.dropboxusercontent.com"


def _api_arg(payload: dict[str, Any]) -> str:
    """Encode a Dropbox-API-Arg header value (HTTP-header-safe JSON)."""
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def to_direct_download_url(url: str) -> str:
    """Rewrite a www.dropbox.com share URL so it serves raw bytes."""
    return url.replace(_SHARE_HOST, _DIRECT_SHARE_HOST, 1)


class DropboxBlobStore(BlobStore):
    """Dropbox-backed blob store.

    Args:
        access_token: OAuth2 bearer token.
        http_client: Optional httpx.AsyncClient for dependency injection
            (testing). When omitted a client is created and owned by the store.
        timeout_seconds: Request timeout for an owned client.
    """

    def __init__(
        self,
        access_token: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DROPBOX_DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not access_token:
            raise ValueError("access_token is required")
        self._access_token = access_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def backend_name(self) -> str:
        return "dropbox"

    def __repr__(self) -> str:
        return "DropboxBlobStore(access_token='***')"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _send(
        self,
        url: str,
        *,
        path: str | None,
        content: bytes | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST to Dropbox and return a 2xx response, raising classified errors otherwise."""
        request_headers = self._auth_headers()
        if headers:
            request_headers.update(headers)
        try:
            if json_body is not None:
                response = await self._client.post(url, json=json_body, headers=request_headers)
            else:
                response = await self._client.post(url, content=content, headers=request_headers)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, path=path) from e

        if response.status_code >= 400:
            raise classify_response(response, path=path)
        return response

    async def _rpc(self, endpoint: str, body: dict[str, Any] | None, *, path: str | None) -> Any:
        """Call an RPC-style endpoint and decode its JSON result."""
        url = f"{DROPBOX_API_URL}/{endpoint}"
        if body is None:
            response = await self._send(
                url, path=path, content=b"null", headers={"Content-Type": "application/json"}
            )
        else:
            response = await self._send(url, path=path, json_body=body)
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise BlobResponseFormatError(
                f"Undecodable response from {endpoint}", path=path, status_code=response.status_code
            ) from e

    @traced_blob_operation("put")
    async def put(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> StoredBlob:
        response = await self._send(
            f"{DROPBOX_CONTENT_URL}/files/upload",
            path=path,
            content=data,
            headers={
                "Content-Type": "application/octet-stream",
                "Dropbox-API-Arg": _api_arg(
                    {"path": path, "mode": "add", "autorename": True, "mute": False}
                ),
            },
        )
        try:
            metadata = response.json()
            final_path = metadata.get("path_display") or metadata.get("path_lower") or path
            blob_id = metadata["id"]
            name = metadata.get("name") or PurePosixPath(final_path).name
        except (json.JSONDecodeError, ValueError, KeyError, AttributeError) as e:
            raise BlobResponseFormatError(
                "Upload succeeded but returned unreadable metadata", path=path
            ) from e

        sha256 = hashlib.sha256(data).hexdigest()
        logger.debug("Uploaded blob to Dropbox: path=%s id=%s", final_path, blob_id)
        return StoredBlob(
            path=final_path,
            blob_id=blob_id,
            name=name,
            size_bytes=int(metadata.get("size", len(data))),
            sha256=sha256,
        )

    @traced_blob_operation("get")
    async def get(self, path: str) -> bytes:
        response = await self._send(
            f"{DROPBOX_CONTENT_URL}/files/download",
            path=path,
            content=b"",
            headers={"Dropbox-API-Arg": _api_arg({"path": path})},
        )
        raw_result = response.headers.get(DROPBOX_API_RESULT_HEADER)
        if raw_result is None:
            raise BlobResponseFormatError("Download response is missing file metadata", path=path)
        try:
            metadata = json.loads(raw_result)
        except json.JSONDecodeError as e:
            raise BlobResponseFormatError(
                "Download response carries undecodable file metadata", path=path
            ) from e
        if not isinstance(metadata, dict):
            raise BlobResponseFormatError("Download metadata is not an object", path=path)

        try:
            return response.content
        except httpx.ResponseNotRead as e:
            raise BlobResponseFormatError("Download body could not be read", path=path) from e

    @traced_blob_operation("get_temporary_link")
    async def get_temporary_link(self, path: str) -> str:
        result = await self._rpc("files/get_temporary_link", {"path": path}, path=path)
        link = result.get("link") if isinstance(result, dict) else None
        if not isinstance(link, str) or not link:
            raise BlobResponseFormatError("Temporary link response has no link", path=path)
        return link

    @traced_blob_operation("create_share_link")
    async def create_share_link(self, path: str) -> ShareLink:
        try:
            result = await self._rpc(
                "sharing/create_shared_link_with_settings",
                {"path": path, "settings": {"requested_visibility": "public"}},
                path=path,
            )
        except BlobStoreError as e:
            if e.status_code != 409 or e.kind != BlobFailureKind.UNKNOWN:
                raise
            url = await self._existing_share_link(path)
            created = False
        else:
            url = result.get("url") if isinstance(result, dict) else None
            created = True

        if not isinstance(url, str) or not url:
            raise BlobResponseFormatError("Share link response has no url", path=path)
        return ShareLink(url=to_direct_download_url(url), created=created)

    async def _existing_share_link(self, path: str) -> str | None:
        """Look up the share link Dropbox reported as already existing."""
        result = await self._rpc(
            "sharing/list_shared_links",
            {"path": path, "direct_only": True},
            path=path,
        )
        links = result.get("links") if isinstance(result, dict) else None
        if not links:
            return None
        url = links[0].get("url") if isinstance(links[0], dict) else None
        return url if isinstance(url, str) else None

    @traced_blob_operation("revoke_share_link")
    async def revoke_share_link(self, url: str) -> None:
        share_url = url.replace(_DIRECT_SHARE_HOST, _SHARE_HOST, 1)
        await self._send(
            f"{DROPBOX_API_URL}/sharing/revoke_shared_link",
            path=None,
            json_body={"url": share_url},
        )

    @traced_blob_operation("delete")
    async def delete(self, path: str) -> None:
        await self._send(f"{DROPBOX_API_URL}/files/delete_v2", path=path, json_body={"path": path})
        logger.debug("Deleted blob from Dropbox: path=%s", path)

    async def check_connectivity(self) -> None:
        await self._rpc("users/get_current_account", None, path=None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
