"""DocVault - versioned document storage with tiered access control.

Document bytes live in a remote object store; metadata, version chains and
access levels live in the metadata store.
"""

__version__ = "1.0.0"
