"""Caller identity supplied by the external authenticator."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class CallerIdentity(BaseModel):
    """Already-verified identity of the caller for one request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actor_id: str = Field(min_length=1)
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, owner_id: str) -> bool:
        return self.actor_id == owner_id
