"""Tests for DocVault Documents API endpoints.

Tests cover:
A) Authentication: missing key, unknown key, unknown role
B) Upload: multipart form, validation failures, error envelope
C) Download: public/private/protected access, PIN via query or header
D) Listing, versions, metadata, verify-pin, diagnostics and delete
"""

import asyncio
import json
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from docvault.api.auth import API_KEY_HEADER, DOCVAULT_API_KEYS_ENV
from docvault.api.main import create_app
from docvault.api.routes.documents import content_disposition
from docvault.services.documents import DocumentService
from docvault.storage.errors import BlobRateLimitedError, BlobStoreError
from docvault.storage.memory_store import InMemoryBlobStore
from docvault.storage.models import BlobPayload

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"

ALICE_KEY = "key-alice-0123456789"
BOB_KEY = "key-bob-0123456789"
ADMIN_KEY = "key-admin-0123456789"
ODD_ROLE_KEY = "key-odd-0123456789"

API_KEYS = {
    ALICE_KEY: {"actor_id": "alice", "role": "user"},
    BOB_KEY: {"actor_id": "bob"},
    ADMIN_KEY: {"actor_id": "root", "role": "ADMIN"},
    ODD_ROLE_KEY: {"actor_id": "mallory", "role": "superuser"},
}


class FailingReadStore(InMemoryBlobStore):
    """Memory store whose reads can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.read_error: BlobStoreError | None = None

    async def get(self, path: str) -> BlobPayload:
        if self.read_error is not None:
            raise self.read_error
        return await super().get(path)


@pytest.fixture
def blob_store() -> FailingReadStore:
    return FailingReadStore()


@pytest.fixture
def api_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Register the test API keys."""
    monkeypatch.setenv(DOCVAULT_API_KEYS_ENV, json.dumps(API_KEYS))


@pytest.fixture
def client(service: DocumentService, api_keys: None) -> Iterator[TestClient]:
    """Test client over an injected in-memory service."""
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def _auth(key: str) -> dict[str, str]:
    return {API_KEY_HEADER: key}


def _upload(
    client: TestClient,
    key: str = ALICE_KEY,
    *,
    name: str = "report.pdf",
    content: bytes = PDF_BYTES,
    content_type: str = "application/pdf",
    **form: str,
) -> dict:
    form.setdefault("access_level", "private")
    response = client.post(
        "/v1/documents",
        headers=_auth(key),
        files={"document": (name, content, content_type)},
        data=form,
    )
    assert response.status_code == 201, response.text
    return response.json()


def _assert_envelope(response, status: int, code: str) -> dict:
    assert response.status_code == status, response.text
    body = response.json()
    assert body["code"] == code
    assert body["message"]
    assert body["request_id"] == response.headers["X-Request-Id"]
    return body


class TestAuthentication:
    def test_missing_key_is_401(self, client: TestClient) -> None:
        """Requests without an API key are rejected."""
        response = client.get("/v1/documents")

        body = _assert_envelope(response, 401, "unauthorized")
        assert body["message"] == "Missing API key"

    def test_unknown_key_is_401(self, client: TestClient) -> None:
        response = client.get("/v1/documents", headers=_auth("not-a-key"))

        body = _assert_envelope(response, 401, "unauthorized")
        assert body["message"] == "Invalid API key"

    def test_unknown_role_is_401(self, client: TestClient) -> None:
        """A registered key with an unrecognized role fails closed."""
        response = client.get("/v1/documents", headers=_auth(ODD_ROLE_KEY))

        _assert_envelope(response, 401, "unauthorized")

    def test_empty_registry_rejects_everyone(
        self, service: DocumentService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Malformed registry JSON is treated as no keys at all."""
        monkeypatch.setenv(DOCVAULT_API_KEYS_ENV, "{not json")

        with TestClient(create_app(service=service)) as client:
            response = client.get("/v1/documents", headers=_auth(ALICE_KEY))

        assert response.status_code == 401


class TestUpload:
    def test_upload_returns_public_record(self, client: TestClient) -> None:
        """201 with the record; the PIN hash is never returned."""
        body = _upload(
            client,
            access_level="protected",
            access_pin="1234",
            description="Quarterly numbers",
            tags="q1, finance,,q1",
        )

        assert len(body["document_id"]) == 32
        assert body["version"] == 1
        assert body["is_latest_version"] is True
        assert body["uploaded_by"] == "alice"
        assert body["access_level"] == "protected"
        assert body["has_pin"] is True
        assert "access_pin" not in body
        assert body["tags"] == ["q1", "finance"]
        assert body["category"] == "pdf"

    def test_private_upload_has_no_pin(self, client: TestClient) -> None:
        body = _upload(client, access_level="private")

        assert body["access_level"] == "private"
        assert body["has_pin"] is False

    def test_missing_access_level_rejected(self, client: TestClient) -> None:
        """An upload without access_level is refused before anything is stored."""
        response = client.post(
            "/v1/documents",
            headers=_auth(ALICE_KEY),
            files={"document": ("report.pdf", PDF_BYTES, "application/pdf")},
        )

        body = _assert_envelope(response, 400, "invalid_access_level")
        assert body["details"] == {"access_level": ""}
        assert client.get("/v1/documents", headers=_auth(ALICE_KEY)).json()["total"] == 0

    def test_second_upload_is_next_version(self, client: TestClient) -> None:
        first = _upload(client)
        second = _upload(client)

        assert second["version"] == 2
        assert second["parent_document"] == first["document_id"]

    def test_invalid_access_level(self, client: TestClient) -> None:
        response = client.post(
            "/v1/documents",
            headers=_auth(ALICE_KEY),
            files={"document": ("report.pdf", PDF_BYTES, "application/pdf")},
            data={"access_level": "secret"},
        )

        body = _assert_envelope(response, 400, "invalid_access_level")
        assert body["details"] == {"access_level": "secret"}

    def test_short_pin(self, client: TestClient) -> None:
        response = client.post(
            "/v1/documents",
            headers=_auth(ALICE_KEY),
            files={"document": ("report.pdf", PDF_BYTES, "application/pdf")},
            data={"access_level": "protected", "access_pin": "12"},
        )

        _assert_envelope(response, 400, "pin_too_short")

    def test_too_large(self, client: TestClient, service: DocumentService) -> None:
        """Oversized bodies are rejected with the configured limit in details."""
        response = client.post(
            "/v1/documents",
            headers=_auth(ALICE_KEY),
            files={"document": ("big.pdf", b"x" * (service.max_upload_bytes + 10), "text/plain")},
        )

        body = _assert_envelope(response, 400, "file_too_large")
        assert body["details"]["max_bytes"] == service.max_upload_bytes

    def test_disallowed_type(self, client: TestClient) -> None:
        response = client.post(
            "/v1/documents",
            headers=_auth(ALICE_KEY),
            files={"document": ("tool.exe", b"MZ", "application/x-msdownload")},
        )

        _assert_envelope(response, 400, "unsupported_file_type")

    def test_missing_file_is_request_validation_error(self, client: TestClient) -> None:
        """Framework validation errors use the same envelope."""
        response = client.post(
            "/v1/documents", headers=_auth(ALICE_KEY), data={"access_level": "public"}
        )

        body = _assert_envelope(response, 422, "request_validation_failed")
        assert body["details"]["errors"][0]["field"] == "document"


class TestDownload:
    def test_public_download(self, client: TestClient) -> None:
        """Bytes come back as an attachment with the recorded content type."""
        doc = _upload(client, access_level="public")

        url = f"/v1/documents/{doc['document_id']}/download"
        response = client.get(url, headers=_auth(BOB_KEY))

        assert response.status_code == 200
        assert response.content == PDF_BYTES
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''report.pdf"
        assert response.headers["X-DocVault-Retrieval-Strategy"] == "direct"
        assert "X-DocVault-Integrity-Warning" not in response.headers

    def test_private_forbidden_for_others(self, client: TestClient) -> None:
        doc = _upload(client, access_level="private")
        url = f"/v1/documents/{doc['document_id']}/download"

        assert client.get(url, headers=_auth(ALICE_KEY)).status_code == 200
        assert client.get(url, headers=_auth(ADMIN_KEY)).status_code == 200
        body = _assert_envelope(client.get(url, headers=_auth(BOB_KEY)), 403, "access_denied")
        assert body["details"]["requires_pin"] is False

    def test_protected_prompts_for_pin(self, client: TestClient) -> None:
        """Missing and wrong PINs are 401 with requires_pin so clients can prompt."""
        doc = _upload(client, access_level="protected", access_pin="1234")
        url = f"/v1/documents/{doc['document_id']}/download"

        missing = _assert_envelope(client.get(url, headers=_auth(ALICE_KEY)), 401, "access_denied")
        wrong = _assert_envelope(
            client.get(url, params={"pin": "9999"}, headers=_auth(ALICE_KEY)), 401, "access_denied"
        )

        assert missing["details"] == {"reason": "pin-required", "requires_pin": True}
        assert wrong["details"] == {"reason": "invalid-pin", "requires_pin": True}

    def test_pin_via_query_or_header(self, client: TestClient) -> None:
        """The header wins when both are sent."""
        doc = _upload(client, access_level="protected", access_pin="1234")
        url = f"/v1/documents/{doc['document_id']}/download"

        by_query = client.get(url, params={"pin": "1234"}, headers=_auth(BOB_KEY))
        by_header = client.get(url, headers={**_auth(BOB_KEY), "X-Document-Pin": "1234"})
        both = client.get(
            url, params={"pin": "0000"}, headers={**_auth(BOB_KEY), "X-Document-Pin": "1234"}
        )

        assert by_query.status_code == 200
        assert by_header.status_code == 200
        assert both.status_code == 200

    def test_unknown_and_malformed_ids(self, client: TestClient) -> None:
        not_found = client.get(f"/v1/documents/{'0' * 32}/download", headers=_auth(ALICE_KEY))
        malformed = client.get("/v1/documents/not-an-id/download", headers=_auth(ALICE_KEY))

        _assert_envelope(not_found, 404, "document_not_found")
        _assert_envelope(malformed, 400, "invalid_document_id")

    def test_missing_blob_is_404(self, client: TestClient, blob_store: FailingReadStore) -> None:
        doc = _upload(client, access_level="public")
        asyncio.run(blob_store.delete(doc["blob_path"]))

        url = f"/v1/documents/{doc['document_id']}/download"
        response = client.get(url, headers=_auth(ALICE_KEY))

        _assert_envelope(response, 404, "blob_not_found")

    def test_rate_limit_is_503_with_retry_after(
        self, client: TestClient, blob_store: FailingReadStore
    ) -> None:
        """Storage throttling is passed on as a retryable 503."""
        doc = _upload(client, access_level="public")
        blob_store.read_error = BlobRateLimitedError(status_code=429, retry_after=2.5)

        url = f"/v1/documents/{doc['document_id']}/download"
        response = client.get(url, headers=_auth(ALICE_KEY))

        body = _assert_envelope(response, 503, "storage_unavailable")
        assert response.headers["Retry-After"] == "3"
        assert body["details"] == {"retry_after": 2.5}

    def test_download_count_updated_after_response(
        self, service: DocumentService, api_keys: None
    ) -> None:
        """The counter is written in the background and settled by shutdown."""
        with TestClient(create_app(service=service)) as client:
            doc = _upload(client, access_level="public")
            for _ in range(3):
                client.get(f"/v1/documents/{doc['document_id']}/download", headers=_auth(BOB_KEY))

        stored = asyncio.run(service.repository.get(doc["document_id"]))
        assert stored is not None
        assert stored.download_count == 3


class TestListing:
    def test_visibility(self, client: TestClient) -> None:
        """Users see their own documents plus others' public and protected ones."""
        _upload(client, ALICE_KEY, name="alice-private.pdf", access_level="private")
        _upload(client, BOB_KEY, name="bob-private.pdf", access_level="private")
        _upload(client, BOB_KEY, name="bob-public.pdf", access_level="public")

        alice = client.get("/v1/documents", headers=_auth(ALICE_KEY)).json()
        admin = client.get("/v1/documents", headers=_auth(ADMIN_KEY)).json()

        assert {d["original_name"] for d in alice["documents"]} == {
            "alice-private.pdf",
            "bob-public.pdf",
        }
        assert alice["total"] == 2
        assert admin["total"] == 3
        assert all("access_pin" not in d for d in admin["documents"])

    def test_pagination_and_versions(self, client: TestClient) -> None:
        for _ in range(3):
            _upload(client, access_level="public")

        latest = client.get("/v1/documents", headers=_auth(ALICE_KEY)).json()
        everything = client.get(
            "/v1/documents",
            params={"showAllVersions": "true", "limit": 2, "page": 2},
            headers=_auth(ALICE_KEY),
        ).json()

        assert latest["total"] == 1
        assert everything["total"] == 3
        assert everything["total_pages"] == 2
        assert everything["page"] == 2
        assert len(everything["documents"]) == 1

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"page": 0}])
    def test_out_of_range_paging(self, client: TestClient, params: dict) -> None:
        response = client.get("/v1/documents", params=params, headers=_auth(ALICE_KEY))

        _assert_envelope(response, 422, "request_validation_failed")

    def test_search_and_category(self, client: TestClient) -> None:
        _upload(client, name="budget.pdf", access_level="public")
        _upload(client, name="notes.txt", content=b"hello", content_type="text/plain")

        by_search = client.get(
            "/v1/documents", params={"search": "BUDGET"}, headers=_auth(ALICE_KEY)
        ).json()
        by_category = client.get(
            "/v1/documents", params={"category": "document"}, headers=_auth(ALICE_KEY)
        ).json()
        bad = client.get("/v1/documents", params={"category": "nope"}, headers=_auth(ALICE_KEY))

        assert [d["original_name"] for d in by_search["documents"]] == ["budget.pdf"]
        assert [d["original_name"] for d in by_category["documents"]] == ["notes.txt"]
        _assert_envelope(bad, 400, "validation_error")


class TestDocumentOperations:
    def test_metadata(self, client: TestClient) -> None:
        doc = _upload(client, access_level="private")
        url = f"/v1/documents/{doc['document_id']}"

        assert client.get(url, headers=_auth(ALICE_KEY)).json()["document_id"] == doc["document_id"]
        _assert_envelope(client.get(url, headers=_auth(BOB_KEY)), 403, "access_denied")

    def test_versions(self, client: TestClient) -> None:
        first = _upload(client)
        second = _upload(client)
        url = f"/v1/documents/{first['document_id']}/versions"

        versions = client.get(url, headers=_auth(ALICE_KEY)).json()["versions"]

        assert [v["document_id"] for v in versions] == [second["document_id"], first["document_id"]]
        _assert_envelope(client.get(url, headers=_auth(BOB_KEY)), 403, "access_denied")

    def test_verify_pin(self, client: TestClient) -> None:
        doc = _upload(client, access_level="protected", access_pin="1234")
        url = f"/v1/documents/{doc['document_id']}/verify-pin"

        ok = client.post(url, json={"pin": "1234"}, headers=_auth(BOB_KEY))
        wrong = client.post(url, json={"pin": "4321"}, headers=_auth(BOB_KEY))
        extra = client.post(url, json={"pin": "1234", "other": 1}, headers=_auth(BOB_KEY))

        assert ok.status_code == 200
        assert ok.json() == {"verified": True}
        _assert_envelope(wrong, 401, "access_denied")
        _assert_envelope(extra, 422, "request_validation_failed")

    def test_diagnostics(self, client: TestClient) -> None:
        doc = _upload(client)
        url = f"/v1/documents/{doc['document_id']}/diagnostics"

        report = client.get(url, headers=_auth(ALICE_KEY)).json()

        assert report["backend"] == "memory"
        assert report["connectivity_ok"] is True
        assert report["blob_readable"] is True
        assert report["strategy"] == "direct"
        assert report["size"] == len(PDF_BYTES)
        _assert_envelope(client.get(url, headers=_auth(BOB_KEY)), 403, "access_denied")

    def test_delete(self, client: TestClient, blob_store: FailingReadStore) -> None:
        """Owner delete removes the blob and the record; others are refused."""
        doc = _upload(client)
        url = f"/v1/documents/{doc['document_id']}"

        _assert_envelope(client.delete(url, headers=_auth(BOB_KEY)), 403, "access_denied")
        response = client.delete(url, headers=_auth(ALICE_KEY))

        assert response.status_code == 200
        assert response.json() == {
            "document_id": doc["document_id"],
            "blob_deleted": True,
            "blob_error": None,
        }
        assert doc["blob_path"] not in blob_store
        _assert_envelope(client.get(url, headers=_auth(ALICE_KEY)), 404, "document_not_found")


def test_content_disposition_encodes_utf8() -> None:
    """Non-ASCII names are percent-encoded per RFC 5987."""
    assert content_disposition("résumé v2.pdf") == (
        "attachment; filename*=UTF-8''r%C3%A9sum%C3%A9%20v2.pdf"
    )
