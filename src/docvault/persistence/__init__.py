"""DocVault metadata persistence."""
