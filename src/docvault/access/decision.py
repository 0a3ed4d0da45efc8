"""Access decisions returned by the evaluator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DenyReason(str, Enum):
    """Why access was refused."""

    PIN_REQUIRED = "pin-required"
    INVALID_PIN = "invalid-pin"
    PRIVATE_FORBIDDEN = "private-forbidden"
    NOT_OWNER = "not-owner"

    @property
    def requires_pin(self) -> bool:
        """True when a (correct) PIN would turn the denial into a grant."""
        return self in (DenyReason.PIN_REQUIRED, DenyReason.INVALID_PIN)


@dataclass(frozen=True)
class AccessDecision:
    """Grant, or deny with a reason.

    Attributes:
        granted: Whether the caller may proceed.
        reason: Denial reason, None when granted.
    """

    granted: bool
    reason: DenyReason | None = None

    @classmethod
    def grant(cls) -> AccessDecision:
        return cls(granted=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> AccessDecision:
        return cls(granted=False, reason=reason)
