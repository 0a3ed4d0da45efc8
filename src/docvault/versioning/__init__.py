"""Document version chains."""

from docvault.versioning.chain import (
    ChainLockRegistry,
    VersionAssignment,
    VersionChainManager,
)

__all__ = ["ChainLockRegistry", "VersionAssignment", "VersionChainManager"]
