"""DocVault services."""
