"""Metadata store connectivity for DocVault.

Provides async engine creation and schema bootstrap.

Environment Variables:
    DOCVAULT_DATABASE_URL: SQLAlchemy URL of the metadata store. Plain
        postgres:// and postgresql:// URLs are switched to the asyncpg driver.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import create_async_engine

from docvault.persistence.schema import metadata

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

DOCVAULT_DATABASE_URL_ENV = "DOCVAULT_DATABASE_URL"


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid.

    This is a fail-closed error: operations requiring the database
    should not proceed without valid configuration.
    """


def _ensure_async_driver(url: str) -> str:
    """Pick an async driver for URLs that do not name one."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def get_database_url(url: str | None = None) -> str:
    """Resolve the database URL.

    Args:
        url: Explicit URL. Falls back to DOCVAULT_DATABASE_URL.

    Raises:
        DatabaseConfigError: If no URL is available.
    """
    url = url or os.environ.get(DOCVAULT_DATABASE_URL_ENV)
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {DOCVAULT_DATABASE_URL_ENV} environment variable."
        )
    return _ensure_async_driver(url)


def create_engine(url: str | None = None) -> AsyncEngine:
    """Create a new async engine.

    Args:
        url: Explicit URL. Falls back to DOCVAULT_DATABASE_URL.
    """
    resolved = get_database_url(url)
    kwargs: dict[str, object] = {"pool_pre_ping": True, "echo": False}
    if not resolved.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    engine = create_async_engine(resolved, **kwargs)
    logger.info("Created metadata store engine (%s)", engine.dialect.name)
    return engine


async def create_schema(engine: AsyncEngine) -> None:
    """Create the documents table and its indexes if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Metadata schema ready")

