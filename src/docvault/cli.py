"""DocVault CLI - operational checks against the configured backends.

Usage:
    python -m docvault check-store [--database]
    python -m docvault init-db [--database-url URL]

Configuration is read from the DOCVAULT_* environment variables
(see docvault.config).

Exit codes:
    0: Success
    1: Check failed / configuration error / internal error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from docvault.config import ConfigError, Settings, load_settings
from docvault.persistence.db import DatabaseConfigError, create_engine, create_schema
from docvault.persistence.repositories.documents import create_repository
from docvault.storage.errors import BlobStoreError
from docvault.storage.factory import create_blob_store


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str) -> dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message}}


async def _check_store(settings: Settings, include_database: bool) -> dict[str, Any]:
    store = create_blob_store(settings)
    result: dict[str, Any] = {"backend": store.backend_name, "ok": True}
    try:
        await store.check_connectivity()
        result["store"] = {"ok": True}
    except BlobStoreError as e:
        result["ok"] = False
        result["store"] = {"ok": False, "kind": e.kind.value, "message": e.message}
    finally:
        await store.aclose()

    if include_database:
        repository = create_repository(settings.database_url)
        try:
            await repository.ping()
            result["database"] = {"ok": True, "configured": settings.database_configured}
        except Exception as e:
            result["ok"] = False
            result["database"] = {
                "ok": False,
                "configured": settings.database_configured,
                "message": f"{type(e).__name__}: {e}",
            }
        finally:
            await repository.aclose()

    return result


async def _init_db(database_url: str | None) -> dict[str, Any]:
    engine = create_engine(database_url)
    try:
        await create_schema(engine)
        return {"ok": True, "dialect": engine.dialect.name}
    finally:
        await engine.dispose()


def cmd_check_store(args: argparse.Namespace) -> int:
    """Probe the configured blob store (and optionally the metadata store)."""
    try:
        settings = load_settings()
    except ConfigError as e:
        _output_json(_make_error_result("CONFIG_ERROR", str(e)))
        return 1

    result = asyncio.run(_check_store(settings, args.database))
    _output_json(result)
    return 0 if result["ok"] else 1


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the documents table and its indexes."""
    try:
        result = asyncio.run(_init_db(args.database_url))
    except DatabaseConfigError as e:
        _output_json(_make_error_result("CONFIG_ERROR", str(e)))
        return 1
    _output_json(result)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="docvault",
        description="DocVault - versioned document storage CLI",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    check_parser = subparsers.add_parser(
        "check-store",
        help="Probe connectivity of the configured blob store",
    )
    check_parser.add_argument(
        "--database",
        action="store_true",
        help="Also ping the metadata store",
    )

    init_parser = subparsers.add_parser(
        "init-db",
        help="Create the metadata schema",
    )
    init_parser.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="Database URL (defaults to DOCVAULT_DATABASE_URL)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Check failed / configuration error / internal error
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        if args.command == "check-store":
            return cmd_check_store(args)

        if args.command == "init-db":
            return cmd_init_db(args)

        return 0

    except Exception as e:
        # Fail closed: unexpected errors exit 1 with a JSON error body
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
