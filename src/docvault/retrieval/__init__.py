"""Resilient blob retrieval."""

from docvault.retrieval.resolver import (
    RetrievalStrategyResolver,
    RetrievedBlob,
    normalize_payload,
)
from docvault.retrieval.strategies import (
    DirectFetchStrategy,
    RetrievalStrategy,
    SharedLinkStrategy,
    TemporaryLinkStrategy,
)

__all__ = [
    "DirectFetchStrategy",
    "RetrievalStrategy",
    "RetrievalStrategyResolver",
    "RetrievedBlob",
    "SharedLinkStrategy",
    "TemporaryLinkStrategy",
    "normalize_payload",
]
