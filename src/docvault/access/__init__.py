"""DocVault access control."""

from docvault.access.decision import AccessDecision, DenyReason
from docvault.access.evaluator import MIN_PIN_LENGTH, AccessControlEvaluator

__all__ = [
    "AccessControlEvaluator",
    "AccessDecision",
    "DenyReason",
    "MIN_PIN_LENGTH",
]
