"""Core primitives shared across Beacon."""

from beacon.core.context import RequestContext, background_context
from beacon.core.ids import generate_id

__all__ = ["RequestContext", "background_context", "generate_id"]
