"""User-facing surfaces."""
