"""Observability module for Beacon.

Structured logging with explicit request correlation fields.
"""

from beacon.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    configure_logging,
)

__all__ = [
    "configure_logging",
    "JsonFormatter",
    "ConsoleFormatter",
]
