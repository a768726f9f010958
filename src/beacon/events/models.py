"""Event model and its translations.

An ``Event`` is immutable once written. Three shapes exist:
- store rows (snake_case, event store datetime format)
- API/stream projections (camelCase)
- webhook payloads (snake_case, fixed field set)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import orjson

from beacon.core.ids import generate_id

# Event store datetime format, always UTC
STORE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class EventSource(str, Enum):
    """Where an event entered the system."""

    API = "api"
    WEBHOOK = "webhook"
    COMMAND = "command"


class RetentionTier(str, Enum):
    """Per-organization retention policy, snapshotted onto each event."""

    BASIC = "basic"
    PREMIUM = "premium"
    UNLIMITED = "unlimited"


def format_store_datetime(value: datetime) -> str:
    """Render as ``YYYY-MM-DD HH:MM:SS.mmm`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(STORE_DATETIME_FORMAT)[:-3]


def parse_store_datetime(value: str | datetime) -> datetime:
    """Parse the store's datetime (or ISO 8601) into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = datetime.strptime(text, STORE_DATETIME_FORMAT)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def isoformat_ms(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _decode_json_field(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (str, bytes)):
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            return default
    return value


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable record of something that happened in a channel."""

    channel_id: str
    project_id: str
    organization_id: str
    title: str
    retention_tier: str = RetentionTier.BASIC.value
    description: str | None = None
    icon: str | None = None
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    notify: bool = True
    source: EventSource = EventSource.API
    display_as: str = "card"
    id: str = field(default_factory=lambda: generate_id("evt"))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_store_row(self) -> dict[str, Any]:
        """Row for the event store datasource."""
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "retention_tier": self.retention_tier,
            "title": self.title,
            "description": self.description or "",
            "icon": self.icon or "",
            "tags": list(self.tags),
            "metadata": self.metadata,
            "user_id": self.user_id or "",
            "notify": self.notify,
            "display_as": self.display_as,
            "source": self.source.value,
            "created_at": format_store_datetime(self.created_at),
        }

    @classmethod
    def from_store_row(cls, row: dict[str, Any]) -> Event:
        """Build an event from a pipe result row.

        Empty strings become None; ``tags`` and ``metadata`` may arrive as
        JSON strings.
        """
        tags = _decode_json_field(row.get("tags"), [])
        metadata = _decode_json_field(row.get("metadata"), {})
        try:
            source = EventSource(row.get("source") or EventSource.API.value)
        except ValueError:
            source = EventSource.API
        return cls(
            id=row["id"],
            channel_id=row["channel_id"],
            project_id=row.get("project_id") or "",
            organization_id=row.get("organization_id") or "",
            retention_tier=row.get("retention_tier") or RetentionTier.BASIC.value,
            title=row.get("title") or "",
            description=row.get("description") or None,
            icon=row.get("icon") or None,
            tags=tuple(tags) if isinstance(tags, list) else (),
            metadata=metadata if isinstance(metadata, dict) else {},
            user_id=row.get("user_id") or None,
            notify=bool(row.get("notify", True)),
            source=source,
            display_as=row.get("display_as") or "card",
            created_at=parse_store_datetime(row["created_at"]),
        )

    def to_api(self) -> dict[str, Any]:
        """camelCase projection used by the API and live streams."""
        return {
            "id": self.id,
            "channelId": self.channel_id,
            "projectId": self.project_id,
            "organizationId": self.organization_id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "tags": list(self.tags),
            "metadata": self.metadata,
            "userId": self.user_id,
            "notify": self.notify,
            "source": self.source.value,
            "createdAt": isoformat_ms(self.created_at),
        }

    def to_webhook_payload(self) -> dict[str, Any]:
        """Fixed projection delivered to webhook subscribers."""
        return {
            "event_id": self.id,
            "channel_id": self.channel_id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "tags": list(self.tags),
            "metadata": self.metadata,
            "user_id": self.user_id,
            "created_at": isoformat_ms(self.created_at),
        }
