"""DocVault FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from docvault import __version__
from docvault.api.errors import (
    DocVaultHttpError,
    docvault_error_handler,
    docvault_http_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
)
from docvault.api.middleware.request_id import RequestIdMiddleware
from docvault.api.routes.documents import router as documents_router
from docvault.api.routes.health import router as health_router
from docvault.config import Settings, load_settings
from docvault.errors import DocVaultError
from docvault.persistence.db import create_schema
from docvault.persistence.repositories.documents import SqlDocumentRepository
from docvault.services.documents import DocumentService

logger = logging.getLogger(__name__)


def create_app(
    service: DocumentService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the DocVault FastAPI application.

    This factory:
    - Registers RequestIdMiddleware so every response carries X-Request-Id
    - Registers the exception handlers that build the error envelope
    - Mounts the health router (no auth required)
    - Mounts the /v1/documents router (auth required)

    When no service is injected, one is built from settings on startup
    (settings default to load_settings()), the metadata schema is created if
    a database is configured, and the service is closed on shutdown. An
    injected service only has its pending side effects drained on shutdown.

    Args:
        service: Optional pre-built DocumentService, mainly for tests.
        settings: Optional Settings used when no service is given.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.service = service
            try:
                yield
            finally:
                await service.side_effects.drain()
            return

        resolved = settings or load_settings()
        owned = DocumentService.from_settings(resolved)
        if isinstance(owned.repository, SqlDocumentRepository):
            await create_schema(owned.repository.engine)
        app.state.service = owned
        logger.info("DocVault API started with %r", resolved)
        try:
            yield
        finally:
            await owned.aclose()

    app = FastAPI(
        title="DocVault API",
        description="Versioned document storage with tiered access control",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(DocVaultHttpError, docvault_http_error_handler)
    app.add_exception_handler(DocVaultError, docvault_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(documents_router)

    return app
