"""Events: model, store client, cached queries, ingestion and fan-out."""

from beacon.events.models import Event, EventSource, RetentionTier
from beacon.events.repository import EventPage, EventRepository
from beacon.events.store import EventStoreClient, EventStoreError, IngestRejectedError

__all__ = [
    "Event",
    "EventSource",
    "RetentionTier",
    "EventPage",
    "EventRepository",
    "EventStoreClient",
    "EventStoreError",
    "IngestRejectedError",
]
