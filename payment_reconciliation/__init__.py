"""Payment reconciliation service: gateway initiation and idempotent callback handling."""

__version__ = "1.0.0"
