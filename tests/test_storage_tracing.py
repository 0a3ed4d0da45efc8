"""Tests for blob store tracing.

Spans are captured with a fake tracer patched into opentelemetry.trace, so
no SDK or exporter is needed.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest
from opentelemetry import trace

from docvault.storage.errors import BlobNotFoundError
from docvault.storage.filesystem_store import FilesystemBlobStore
from docvault.storage.tracing import DOCVAULT_OTEL_ENABLED_ENV

pytestmark = pytest.mark.asyncio

PATH = "/documents/1700000000000-salary-review.pdf"


class FakeSpan:
    def __init__(self, name: str) -> None:
        self.name = name
        self.attributes: dict[str, Any] = {}

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class FakeTracer:
    def __init__(self) -> None:
        self.spans: list[FakeSpan] = []

    @contextmanager
    def start_as_current_span(self, name: str) -> Iterator[FakeSpan]:
        span = FakeSpan(name)
        self.spans.append(span)
        yield span


@pytest.fixture
def tracer(monkeypatch: pytest.MonkeyPatch) -> FakeTracer:
    fake = FakeTracer()
    monkeypatch.setattr(trace, "get_tracer", lambda *args, **kwargs: fake)
    return fake


class TestTracingDisabled:
    async def test_no_spans_by_default(self, tracer: FakeTracer, tmp_path: Path) -> None:
        """Tracing is off unless DOCVAULT_OTEL_ENABLED is set."""
        store = FilesystemBlobStore(tmp_path)

        await store.put(PATH, b"data")

        assert tracer.spans == []


class TestTracingEnabled:
    @pytest.fixture(autouse=True)
    def enable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(DOCVAULT_OTEL_ENABLED_ENV, "1")

    async def test_put_span_hashes_path(self, tracer: FakeTracer, tmp_path: Path) -> None:
        """The blob path is exported only as a SHA256 hash."""
        store = FilesystemBlobStore(tmp_path)

        stored = await store.put(PATH, b"data")

        span = tracer.spans[0]
        assert span.name == "docvault.blob_store.put"
        assert span.attributes["storage.backend"] == "filesystem"
        assert span.attributes["docvault.blob_path_sha256"] == hashlib.sha256(
            PATH.encode("utf-8")
        ).hexdigest()
        assert span.attributes["docvault.blob_sha256"] == stored.sha256
        assert PATH not in [str(v) for v in span.attributes.values()]

    async def test_failure_kind_recorded(self, tracer: FakeTracer, tmp_path: Path) -> None:
        """Failed operations mark the span and re-raise."""
        store = FilesystemBlobStore(tmp_path)

        with pytest.raises(BlobNotFoundError):
            await store.get(PATH)

        span = tracer.spans[0]
        assert span.attributes["error"] is True
        assert span.attributes["docvault.blob_failure_kind"] == "not_found"
