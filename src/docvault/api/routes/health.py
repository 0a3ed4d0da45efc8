"""Health check endpoint for the DocVault API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from docvault import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    time: str
    version: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Liveness check.

    Does not touch the blob store or the database; use
    GET /v1/documents/{id}/diagnostics or `docvault check-store` for that.
    """
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
    )
