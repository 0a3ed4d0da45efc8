"""Error envelope for DocVault API responses.

Every error body has the same shape, whichever handler produced it:

    {"code": "document_not_found", "message": "Document not found",
     "details": {"document_id": "..."}, "request_id": "..."}

Codes are lowercase snake_case. Service errors use their own ``code``;
framework errors (404 on an unknown route, 405, 422) fall back to a code
derived from the HTTP status. ``details`` never carries PINs, hashes or
store credentials.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from docvault.api.middleware.request_id import REQUEST_ID_HEADER

REQUEST_VALIDATION_CODE = "request_validation_failed"
INTERNAL_ERROR_CODE = "internal_error"

_STATUS_CODES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    422: REQUEST_VALIDATION_CODE,
    500: INTERNAL_ERROR_CODE,
    502: "bad_gateway",
    503: "storage_unavailable",
}


def code_for_status(status_code: int) -> str:
    """Envelope code for a bare HTTP status."""
    return _STATUS_CODES.get(status_code, "http_error")


def request_id_for(request: Request) -> str:
    """The request's correlation id.

    Normally set by RequestIdMiddleware; errors raised before the middleware
    ran fall back to the incoming header or a fresh uuid4.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the JSON error envelope.

    Args:
        request: Current request, for the correlation id.
        code: Machine-readable error code.
        message: Human-readable message, safe to show to clients.
        http_status: Response status.
        details: Extra context (no secrets).
        headers: Extra response headers, e.g. Retry-After.
    """
    request_id = request_id_for(request)
    response = JSONResponse(
        status_code=http_status,
        content={
            "code": code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=headers,
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
