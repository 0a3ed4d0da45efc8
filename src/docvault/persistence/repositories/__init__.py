"""Repositories for metadata persistence."""

from docvault.persistence.repositories.documents import (
    DocumentQuery,
    DocumentRepository,
    InMemoryDocumentRepository,
    SqlDocumentRepository,
    create_repository,
)

__all__ = [
    "DocumentQuery",
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "SqlDocumentRepository",
    "create_repository",
]
