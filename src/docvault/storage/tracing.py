"""DocVault blob storage OpenTelemetry tracing integration.

Provides a tracing decorator for async blob store operations.

Security:
    - Never export raw blob paths in span attributes (they carry filenames)
    - No tokens or share URLs in any span attribute
"""

from __future__ import annotations

import functools
import hashlib
import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar, cast

logger = logging.getLogger(__name__)

DOCVAULT_OTEL_ENABLED_ENV = "DOCVAULT_OTEL_ENABLED"

F = TypeVar("F", bound=Callable[..., Any])


def _is_otel_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return os.environ.get(DOCVAULT_OTEL_ENABLED_ENV, "").strip().lower() in ("1", "true", "yes")


def traced_blob_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace async blob store operations with OpenTelemetry.

    The first positional argument after ``self`` is treated as the blob path
    (or share URL) and is only ever exported as a SHA256 hash.

    Args:
        operation: Operation name (e.g., "put", "get", "delete").

    Returns:
        Decorated coroutine function that emits OTel spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return await func(self, *args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return await func(self, *args, **kwargs)

            tracer = trace.get_tracer("docvault.blob_store")
            with tracer.start_as_current_span(f"docvault.blob_store.{operation}") as span:
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                if args and isinstance(args[0], str):
                    target_sha256 = hashlib.sha256(args[0].encode("utf-8")).hexdigest()
                    span.set_attribute("docvault.blob_path_sha256", target_sha256)

                try:
                    result = await func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    kind = getattr(e, "kind", None)
                    if kind is not None:
                        span.set_attribute("docvault.blob_failure_kind", str(kind.value))
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add size and hash attributes for write results."""
    try:
        from docvault.storage.models import StoredBlob

        if isinstance(result, StoredBlob):
            span.set_attribute("docvault.blob_sha256", result.sha256)
            span.set_attribute("docvault.blob_size_bytes", result.size_bytes)
        elif isinstance(result, bytes | bytearray):
            span.set_attribute("docvault.blob_size_bytes", len(result))
    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)
