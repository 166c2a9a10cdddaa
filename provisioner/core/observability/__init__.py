"""Observability — logging setup and secret redaction."""
