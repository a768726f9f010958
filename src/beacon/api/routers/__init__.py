"""HTTP routers for Beacon."""

from beacon.api.routers import events, health, ingest, push, streams, webhooks

__all__ = ["events", "health", "ingest", "push", "streams", "webhooks"]
