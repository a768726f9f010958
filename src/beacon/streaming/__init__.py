"""Live event delivery over Server-Sent Events."""

from beacon.streaming.sse import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    EventStreamer,
    channel_poller,
    organization_poller,
    sse_frame,
)

__all__ = [
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "EventStreamer",
    "channel_poller",
    "organization_poller",
    "sse_frame",
]
