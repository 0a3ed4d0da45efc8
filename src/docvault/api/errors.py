"""DocVault API error handling.

Provides DocVaultHttpError and the FastAPI exception handlers that turn
every failure into the error envelope built by make_error_response.

Global exception handlers:
- DocVaultHttpError: HTTP-layer errors (authentication)
- DocVaultError: Service taxonomy, mapped to status codes by type
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

import logging
import math
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from docvault.api.error_model import (
    INTERNAL_ERROR_CODE,
    REQUEST_VALIDATION_CODE,
    code_for_status,
    make_error_response,
)
from docvault.errors import (
    AccessDeniedError,
    DocVaultError,
    NotFoundError,
    StorageError,
    StorageTransientError,
    ValidationError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Error envelope schema, used in route response documentation."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


class DocVaultHttpError(Exception):
    """HTTP-layer error with a structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401).
        code: Machine-readable error code (e.g., "unauthorized").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def status_for_error(exc: DocVaultError) -> int:
    """HTTP status for a service error.

    A denial that a PIN could fix is 401 so clients know to prompt for one;
    every other denial is 403.
    """
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AccessDeniedError):
        return 401 if exc.requires_pin else 403
    if isinstance(exc, VersionConflictError):
        return 409
    if isinstance(exc, StorageTransientError):
        return 503
    if isinstance(exc, StorageError):
        return 502
    return 500


async def docvault_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for DocVaultHttpError."""
    assert isinstance(exc, DocVaultHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def docvault_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for the service error taxonomy.

    Storage failures are logged here since they surface as 5xx; client
    errors are not.
    """
    assert isinstance(exc, DocVaultError)

    http_status = status_for_error(exc)
    headers: dict[str, str] | None = None
    if isinstance(exc, StorageTransientError) and exc.retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}

    if http_status >= 500:
        logger.warning(
            "Request failed with %s: %s",
            exc.code,
            exc.message,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=http_status,
        details=exc.details or None,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    code = code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler for RequestValidationError.

    Reports field names and messages only, never the submitted values.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code=REQUEST_VALIDATION_CODE,
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler: 500 with a generic message, exception logged."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code=INTERNAL_ERROR_CODE,
        message="An internal error occurred",
        http_status=500,
        details=None,
    )
