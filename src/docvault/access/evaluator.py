"""Access control evaluator.

Decides whether a caller may read a document, given its access level and an
optional PIN:

    public      -> granted
    private     -> granted to the owner and admins only
    protected   -> granted to anyone presenting the correct PIN; owners and
                   admins are not exempt

PINs are stored as salted bcrypt hashes. Comparison against a protected
record with no stored hash still runs bcrypt (against a dummy hash) so the
response time does not reveal the record's state.
"""

from __future__ import annotations

import logging

import bcrypt

from docvault.access.decision import AccessDecision, DenyReason
from docvault.models.caller import CallerIdentity
from docvault.models.document import AccessLevel, DocumentRecord

logger = logging.getLogger(__name__)

DEFAULT_PIN_HASH_ROUNDS = 10
MIN_PIN_LENGTH = 4

# bcrypt only looks at the first 72 bytes of its input.
_BCRYPT_MAX_INPUT_BYTES = 72


def _pin_bytes(pin: str) -> bytes:
    return pin.encode("utf-8")[:_BCRYPT_MAX_INPUT_BYTES]


class AccessControlEvaluator:
    """Pure access decisions over document records.

    Args:
        pin_hash_rounds: bcrypt cost factor used by hash_pin and for the
            dummy comparison hash.
    """

    def __init__(self, pin_hash_rounds: int = DEFAULT_PIN_HASH_ROUNDS) -> None:
        self._rounds = pin_hash_rounds
        self._dummy_hash: bytes | None = None

    def hash_pin(self, pin: str) -> str:
        """Return a salted bcrypt hash of the PIN.

        Args:
            pin: Plaintext PIN.

        Returns:
            Hash string suitable for DocumentRecord.access_pin.
        """
        return bcrypt.hashpw(_pin_bytes(pin), bcrypt.gensalt(rounds=self._rounds)).decode("ascii")

    def verify_pin(self, stored_hash: str | None, pin: str) -> bool:
        """Compare a PIN with a stored hash in constant work.

        A missing or malformed stored hash never matches, but bcrypt still
        runs against the dummy hash.
        """
        candidate = _pin_bytes(pin)
        if stored_hash:
            try:
                return bcrypt.checkpw(candidate, stored_hash.encode("ascii"))
            except ValueError:
                logger.warning("Stored PIN hash is malformed")
        bcrypt.checkpw(candidate, self._get_dummy_hash())
        return False

    def _get_dummy_hash(self) -> bytes:
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"docvault-dummy-pin", bcrypt.gensalt(self._rounds))
        return self._dummy_hash

    def evaluate(
        self,
        document: DocumentRecord,
        caller: CallerIdentity | None,
        supplied_pin: str | None = None,
    ) -> AccessDecision:
        """Decide whether caller may read document.

        Args:
            document: The record being accessed.
            caller: Verified caller identity, or None for anonymous access.
            supplied_pin: PIN presented with the request, if any.

        Returns:
            AccessDecision.grant(), or a denial carrying the reason.
        """
        level = document.access_level
        if level == AccessLevel.PUBLIC:
            return AccessDecision.grant()

        if level == AccessLevel.PRIVATE:
            if caller is not None and (caller.is_admin or caller.owns(document.uploaded_by)):
                return AccessDecision.grant()
            return AccessDecision.deny(DenyReason.PRIVATE_FORBIDDEN)

        if not supplied_pin:
            return AccessDecision.deny(DenyReason.PIN_REQUIRED)
        if self.verify_pin(document.access_pin, supplied_pin):
            return AccessDecision.grant()
        return AccessDecision.deny(DenyReason.INVALID_PIN)

    def authorize_owner(
        self,
        document: DocumentRecord,
        caller: CallerIdentity | None,
    ) -> AccessDecision:
        """Owner-or-admin check used by delete and version listing."""
        if caller is not None and (caller.is_admin or caller.owns(document.uploaded_by)):
            return AccessDecision.grant()
        return AccessDecision.deny(DenyReason.NOT_OWNER)
