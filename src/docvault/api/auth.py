"""DocVault API caller authentication.

Callers present an API key in the X-DocVault-API-Key header. Keys are
registered in DOCVAULT_API_KEYS_JSON:

    {"<key>": {"actor_id": "alice", "role": "user"}}

Fails closed: a missing, unknown or malformed key, or an unknown role, is a
401. Keys are compared in constant time.
"""

import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from docvault.api.errors import DocVaultHttpError
from docvault.models.caller import CallerIdentity, Role

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-DocVault-API-Key"
DOCVAULT_API_KEYS_ENV = "DOCVAULT_API_KEYS_JSON"


class ApiKeyRecord(BaseModel):
    """API key registry entry.

    The role is kept as a plain string here so an unknown role can be
    rejected at request time rather than silently dropping the key.
    """

    actor_id: str
    role: str = Role.USER.value


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load the API key registry from the environment.

    Returns:
        Dict mapping API key strings to ApiKeyRecord objects.
        Empty if the variable is missing or not a JSON object.
    """
    raw = os.environ.get(DOCVAULT_API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", DOCVAULT_API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not a dict; treating as empty registry", DOCVAULT_API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            continue

    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Compare against every registered key with hmac.compare_digest."""
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def _unauthorized(message: str) -> DocVaultHttpError:
    return DocVaultHttpError(status_code=401, code="unauthorized", message=message)


def authenticate_request(request: Request) -> CallerIdentity:
    """Resolve the caller from the API key header.

    Raises:
        DocVaultHttpError: 401 on any authentication failure.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise _unauthorized("Missing API key")

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise _unauthorized("Invalid API key")

    try:
        role = Role(record.role.strip().lower())
    except ValueError:
        raise _unauthorized("Invalid credentials") from None

    return CallerIdentity(actor_id=record.actor_id, role=role)


async def require_caller(request: Request) -> CallerIdentity:
    """FastAPI dependency returning the authenticated caller.

    The identity is also stored on request.state.caller.
    """
    caller = authenticate_request(request)
    request.state.caller = caller
    return caller


RequireCaller = Annotated[CallerIdentity, Depends(require_caller)]
