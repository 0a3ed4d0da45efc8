"""Tests for the multi-strategy blob retrieval resolver.

Link downloads go through httpx.MockTransport; the store is scripted per test.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import httpx
import pytest

from docvault.retrieval import RetrievalStrategyResolver, normalize_payload
from docvault.services.side_effects import SideEffectRunner
from docvault.storage.blob_store import BlobStore
from docvault.storage.errors import (
    BlobAuthError,
    BlobConnectivityError,
    BlobNotFoundError,
    BlobRateLimitedError,
    BlobResponseFormatError,
    BlobStoreError,
    BlobTransientError,
)
from docvault.storage.models import BlobPayload, ShareLink, StoredBlob

pytestmark = pytest.mark.asyncio

BLOB_PATH = "/documents/1700000000000-report.pdf"
TEMP_URL = "https://content.example.test/temp/report.pdf"
SHARE_URL = "https://dl.example.test/s/abc/report.pdf"


def _outcome(value: object) -> object:
    if isinstance(value, BaseException):
        raise value
    return value


class ScriptedStore(BlobStore):
    """Blob store whose answers are set by the test."""

    def __init__(self) -> None:
        self.get_result: object = b"direct-bytes"
        self.get_delay = 0.0
        self.temp_link: object = TEMP_URL
        self.share_link: object = ShareLink(SHARE_URL)
        self.probe_error: BlobStoreError | None = None
        self.revoke_error: BlobStoreError | None = None
        self.calls: list[str] = []
        self.revoked: list[str] = []

    @property
    def backend_name(self) -> str:
        return "scripted"

    async def put(
        self, path: str, data: bytes, *, content_type: str | None = None
    ) -> StoredBlob:
        raise NotImplementedError

    async def get(self, path: str) -> BlobPayload:
        self.calls.append("get")
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        return _outcome(self.get_result)  # type: ignore[return-value]

    async def get_temporary_link(self, path: str) -> str:
        self.calls.append("get_temporary_link")
        return _outcome(self.temp_link)  # type: ignore[return-value]

    async def create_share_link(self, path: str) -> ShareLink:
        self.calls.append("create_share_link")
        return _outcome(self.share_link)  # type: ignore[return-value]

    async def revoke_share_link(self, url: str) -> None:
        self.revoked.append(url)
        if self.revoke_error is not None:
            raise self.revoke_error

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def check_connectivity(self) -> None:
        self.calls.append("check_connectivity")
        if self.probe_error is not None:
            raise self.probe_error


def _link_client(responses: dict[str, httpx.Response]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return responses.get(str(request.url), httpx.Response(404))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _resolver(
    store: ScriptedStore,
    responses: dict[str, httpx.Response] | None = None,
    *,
    side_effects: SideEffectRunner | None = None,
    attempt_timeout: float = 5.0,
) -> RetrievalStrategyResolver:
    return RetrievalStrategyResolver(
        store,
        http_client=_link_client(responses or {}),
        side_effects=side_effects or SideEffectRunner(),
        attempt_timeout=attempt_timeout,
    )


class TestStrategyOrder:
    async def test_default_strategy_order(self) -> None:
        """Direct fetch, then temporary link, then shared link."""
        resolver = _resolver(ScriptedStore())

        assert resolver.strategy_names == ["direct", "temporary_link", "shared_link"]

    async def test_direct_fetch_wins_without_links(self) -> None:
        """A successful direct fetch never asks for a link."""
        store = ScriptedStore()

        result = await _resolver(store).fetch(BLOB_PATH)

        assert result.content == b"direct-bytes"
        assert result.strategy == "direct"
        assert store.calls == ["check_connectivity", "get"]

    async def test_recoverable_direct_failure_falls_through_to_temporary_link(self) -> None:
        """An unusable direct response moves on to the temporary link."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("no metadata header", path=BLOB_PATH)
        resolver = _resolver(store, {TEMP_URL: httpx.Response(200, content=b"temp-bytes")})

        result = await resolver.fetch(BLOB_PATH)

        assert result.content == b"temp-bytes"
        assert result.strategy == "temporary_link"
        assert "create_share_link" not in store.calls

    async def test_falls_through_to_shared_link_and_revokes(self) -> None:
        """When both earlier strategies fail recoverably the shared link is used, then revoked."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("bad body", path=BLOB_PATH)
        store.temp_link = BlobResponseFormatError("no link field", path=BLOB_PATH)
        side_effects = SideEffectRunner()
        resolver = _resolver(
            store,
            {SHARE_URL: httpx.Response(200, content=b"shared-bytes")},
            side_effects=side_effects,
        )

        result = await resolver.fetch(BLOB_PATH)
        await side_effects.drain()

        assert result.content == b"shared-bytes"
        assert result.strategy == "shared_link"
        assert store.revoked == [SHARE_URL]

    async def test_every_strategy_recoverable_raises_last_error(self) -> None:
        """When all strategies fail recoverably the last failure surfaces."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("first", path=BLOB_PATH)
        store.temp_link = BlobResponseFormatError("second", path=BLOB_PATH)
        store.share_link = BlobResponseFormatError("third", path=BLOB_PATH)

        with pytest.raises(BlobResponseFormatError, match="third"):
            await _resolver(store).fetch(BLOB_PATH)


class TestTerminalFailures:
    @pytest.mark.parametrize(
        "error",
        [
            BlobNotFoundError(path=BLOB_PATH),
            BlobAuthError("expired token", path=BLOB_PATH, status_code=401),
            BlobRateLimitedError(path=BLOB_PATH, status_code=429, retry_after=3),
            BlobTransientError("server error", path=BLOB_PATH, status_code=503),
        ],
    )
    async def test_non_recoverable_failure_does_not_fall_through(
        self, error: BlobStoreError
    ) -> None:
        """Not found, auth, rate limit and transient errors stop the chain at once."""
        store = ScriptedStore()
        store.get_result = error

        with pytest.raises(type(error)) as exc_info:
            await _resolver(store).fetch(BLOB_PATH)

        assert exc_info.value is error
        assert "get_temporary_link" not in store.calls
        assert "create_share_link" not in store.calls

    async def test_link_fetch_404_is_not_found(self) -> None:
        """A missing object behind a temporary link is terminal, not a fallback."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("bad body", path=BLOB_PATH)
        resolver = _resolver(store, {TEMP_URL: httpx.Response(404)})

        with pytest.raises(BlobNotFoundError):
            await resolver.fetch(BLOB_PATH)

        assert "create_share_link" not in store.calls

    async def test_failed_probe_prevents_every_strategy(self) -> None:
        """A failed connectivity probe aborts before any retrieval attempt."""
        store = ScriptedStore()
        probe_error = BlobAuthError("invalid token", status_code=401)
        store.probe_error = probe_error

        with pytest.raises(BlobConnectivityError) as exc_info:
            await _resolver(store).fetch(BLOB_PATH)

        assert exc_info.value.cause is probe_error
        assert exc_info.value.kind == probe_error.kind
        assert store.calls == ["check_connectivity"]

    async def test_timed_out_attempt_is_transient(self) -> None:
        """An attempt exceeding its timeout abandons the chain as transient."""
        store = ScriptedStore()
        store.get_delay = 1.0

        with pytest.raises(BlobTransientError, match="timed out"):
            await _resolver(store, attempt_timeout=0.05).fetch(BLOB_PATH)

        assert "get_temporary_link" not in store.calls


class TestShareLinkRevocation:
    async def test_revocation_failure_never_fails_download(self) -> None:
        """A failed revocation is reported to the error channel only."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("bad body", path=BLOB_PATH)
        store.temp_link = BlobResponseFormatError("no link", path=BLOB_PATH)
        store.revoke_error = BlobTransientError("revoke failed")
        failures: list[tuple[str, BaseException]] = []
        side_effects = SideEffectRunner(on_error=lambda name, exc: failures.append((name, exc)))
        resolver = _resolver(
            store,
            {SHARE_URL: httpx.Response(200, content=b"shared-bytes")},
            side_effects=side_effects,
        )

        result = await resolver.fetch(BLOB_PATH)
        await side_effects.drain()

        assert result.content == b"shared-bytes"
        assert [name for name, _ in failures] == ["revoke_share_link"]

    async def test_link_revoked_even_when_download_fails(self) -> None:
        """The share link is revoked whether or not its download succeeded."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("bad body", path=BLOB_PATH)
        store.temp_link = BlobResponseFormatError("no link", path=BLOB_PATH)
        side_effects = SideEffectRunner()
        resolver = _resolver(store, {SHARE_URL: httpx.Response(500)}, side_effects=side_effects)

        with pytest.raises(BlobTransientError):
            await resolver.fetch(BLOB_PATH)
        await side_effects.drain()

        assert store.revoked == [SHARE_URL]

    async def test_preexisting_link_left_alone(self) -> None:
        """A link the store reused rather than created is never revoked."""
        store = ScriptedStore()
        store.get_result = BlobResponseFormatError("bad body", path=BLOB_PATH)
        store.temp_link = BlobResponseFormatError("no link", path=BLOB_PATH)
        store.share_link = ShareLink(SHARE_URL, created=False)
        side_effects = SideEffectRunner()
        resolver = _resolver(
            store,
            {SHARE_URL: httpx.Response(200, content=b"shared-bytes")},
            side_effects=side_effects,
        )

        result = await resolver.fetch(BLOB_PATH)
        await side_effects.drain()

        assert result.content == b"shared-bytes"
        assert result.strategy == "shared_link"
        assert store.revoked == []
        assert side_effects.pending == 0


class TestNormalization:
    async def test_bytes_like_payloads(self) -> None:
        """bytearray and memoryview payloads become bytes."""
        assert await normalize_payload(bytearray(b"abc"), path=BLOB_PATH) == b"abc"
        assert await normalize_payload(memoryview(b"abc"), path=BLOB_PATH) == b"abc"

    async def test_chunk_iterables_joined(self) -> None:
        """Sync and async chunk iterables are concatenated in order."""

        async def chunks() -> AsyncIterator[bytes]:
            yield b"ab"
            yield b"cd"

        assert await normalize_payload([b"ab", b"cd"], path=BLOB_PATH) == b"abcd"
        assert await normalize_payload(chunks(), path=BLOB_PATH) == b"abcd"

    async def test_text_payload_is_recoverable_format_error(self) -> None:
        """Text is not bytes; the error lets the next strategy try."""
        with pytest.raises(BlobResponseFormatError) as exc_info:
            await normalize_payload("not bytes", path=BLOB_PATH)  # type: ignore[arg-type]

        assert exc_info.value.recoverable is True

    async def test_async_iterator_payload_from_direct_fetch(self) -> None:
        """A streamed direct download is normalized before it is returned."""

        async def stream() -> AsyncIterator[bytes]:
            yield b"str"
            yield b"eamed"

        store = ScriptedStore()
        store.get_result = stream()

        result = await _resolver(store).fetch(BLOB_PATH)

        assert result.content == b"streamed"
        assert result.strategy == "direct"
