"""Web layer contracts."""
