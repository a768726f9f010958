"""Repository pattern for Beacon's relational state.

Repositories wrap an ``AsyncSession`` and only ``flush``; the caller owns
the transaction and commits.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.persistence.tables import (
    ApiKeyTable,
    ChannelTable,
    OrganizationTable,
    ProjectTable,
    PushSubscriptionTable,
    SessionTable,
    WebhookTable,
)
from beacon.security.urls import validate_outbound_url

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_TIER = "basic"

# Days a soft-deleted project is kept, per retention tier; None keeps forever
RETENTION_DAYS: dict[str, int | None] = {
    "basic": 90,
    "premium": 365,
    "unlimited": None,
}


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store API keys and session tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class BaseRepository:
    """Base repository holding the session."""

    def __init__(self, session: AsyncSession):
        self.session = session


class OrganizationRepository(BaseRepository):
    """Organization lookups needed on the ingestion path."""

    async def get(self, organization_id: str) -> OrganizationTable | None:
        return await self.session.get(OrganizationTable, organization_id)

    async def get_retention_tier(self, organization_id: str) -> str:
        """Retention tier of the organization, ``basic`` when unknown."""
        tiers = await self.get_retention_tiers([organization_id])
        return tiers.get(organization_id, DEFAULT_RETENTION_TIER)

    async def get_retention_tiers(self, organization_ids: Iterable[str]) -> dict[str, str]:
        """Retention tiers for many organizations in one query."""
        ids = sorted(set(organization_ids))
        if not ids:
            return {}
        stmt = select(OrganizationTable.id, OrganizationTable.retention_tier).where(
            OrganizationTable.id.in_(ids)
        )
        result = await self.session.execute(stmt)
        return {row.id: row.retention_tier or DEFAULT_RETENTION_TIER for row in result}


class ChannelRepository(BaseRepository):
    """Channel rows. Names are expected to be slugified by the caller."""

    async def get_by_name(self, project_id: str, name: str) -> ChannelTable | None:
        stmt = select(ChannelTable).where(
            ChannelTable.project_id == project_id,
            ChannelTable.name == name,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many_by_names(
        self, project_id: str, names: Iterable[str]
    ) -> dict[str, ChannelTable]:
        """Channels of a project keyed by name, in one query."""
        wanted = sorted(set(names))
        if not wanted:
            return {}
        stmt = select(ChannelTable).where(
            ChannelTable.project_id == project_id,
            ChannelTable.name.in_(wanted),
        )
        result = await self.session.execute(stmt)
        return {channel.name: channel for channel in result.scalars()}

    async def get_by_id(self, channel_id: str, organization_id: str) -> ChannelTable | None:
        """Live channel owned by the organization."""
        stmt = select(ChannelTable).where(
            ChannelTable.id == channel_id,
            ChannelTable.organization_id == organization_id,
            ChannelTable.deleted_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        project_id: str,
        organization_id: str,
        name: str,
        icon: str | None = None,
        description: str | None = None,
    ) -> ChannelTable:
        channel = ChannelTable(
            project_id=project_id,
            organization_id=organization_id,
            name=name,
            icon=icon,
            description=description,
        )
        self.session.add(channel)
        await self.session.flush()
        return channel

    async def soft_delete_for_project(self, project_id: str) -> int:
        """Mark every channel of a project deleted."""
        stmt = (
            update(ChannelTable)
            .where(ChannelTable.project_id == project_id, ChannelTable.deleted_at.is_(None))
            .values(deleted_at=datetime.now(UTC))
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0


class ProjectRepository(BaseRepository):
    """Project soft delete and retention purge."""

    async def soft_delete(self, project_id: str, organization_id: str) -> bool:
        """Soft-delete a project together with its channels."""
        stmt = (
            update(ProjectTable)
            .where(
                ProjectTable.id == project_id,
                ProjectTable.organization_id == organization_id,
                ProjectTable.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(UTC))
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            return False
        await ChannelRepository(self.session).soft_delete_for_project(project_id)
        return True

    async def list_expired(self, now: datetime | None = None) -> list[tuple[str, str]]:
        """Soft-deleted projects past their organization's retention window.

        Returns:
            List of (project_id, retention_tier)
        """
        now = now or datetime.now(UTC)
        stmt = (
            select(ProjectTable.id, ProjectTable.deleted_at, OrganizationTable.retention_tier)
            .join(OrganizationTable, OrganizationTable.id == ProjectTable.organization_id)
            .where(ProjectTable.deleted_at.is_not(None))
        )
        expired: list[tuple[str, str]] = []
        for row in await self.session.execute(stmt):
            days = RETENTION_DAYS.get(row.retention_tier, RETENTION_DAYS[DEFAULT_RETENTION_TIER])
            if days is None:
                continue
            deleted_at = row.deleted_at
            if deleted_at.tzinfo is None:
                deleted_at = deleted_at.replace(tzinfo=UTC)
            if deleted_at < now - timedelta(days=days):
                expired.append((row.id, row.retention_tier))
        return expired

    async def purge(self, project_id: str) -> dict[str, int]:
        """Hard-delete a project and its channels and API keys."""
        channels = await self.session.execute(
            delete(ChannelTable).where(ChannelTable.project_id == project_id)
        )
        api_keys = await self.session.execute(
            delete(ApiKeyTable).where(ApiKeyTable.project_id == project_id)
        )
        await self.session.execute(delete(ProjectTable).where(ProjectTable.id == project_id))
        return {
            "channels_deleted": channels.rowcount or 0,
            "api_keys_deleted": api_keys.rowcount or 0,
        }


class ApiKeyRepository(BaseRepository):
    """API key verification."""

    async def verify(self, raw_key: str) -> ApiKeyTable | None:
        """Return the enabled key matching ``raw_key``."""
        stmt = select(ApiKeyTable).where(
            ApiKeyTable.key_hash == hash_token(raw_key),
            ApiKeyTable.enabled.is_(True),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        organization_id: str,
        project_id: str,
        raw_key: str,
        name: str = "default",
        rate_limit: int | None = None,
    ) -> ApiKeyTable:
        key = ApiKeyTable(
            organization_id=organization_id,
            project_id=project_id,
            name=name,
            prefix=raw_key[:8],
            key_hash=hash_token(raw_key),
            rate_limit=rate_limit,
        )
        self.session.add(key)
        await self.session.flush()
        return key


class SessionRepository(BaseRepository):
    """Browser session lookups."""

    async def get_active(self, token: str, now: datetime | None = None) -> SessionTable | None:
        """Unexpired session for a cookie token."""
        now = now or datetime.now(UTC)
        stmt = select(SessionTable).where(
            SessionTable.token_hash == hash_token(token),
            SessionTable.expires_at > now,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class WebhookRepository(BaseRepository):
    """Webhook subscriptions. Secrets are stored already encrypted."""

    async def create(
        self,
        channel_id: str,
        organization_id: str,
        url: str,
        encrypted_secret: str | None = None,
        events: Sequence[str] | None = None,
        enabled: bool = True,
    ) -> WebhookTable:
        """Register a webhook.

        Raises:
            UnsafeUrlError: The URL targets a local or private address
        """
        validate_outbound_url(url)
        webhook = WebhookTable(
            channel_id=channel_id,
            organization_id=organization_id,
            url=url,
            secret=encrypted_secret,
            events=list(events) if events else ["all"],
            enabled=enabled,
        )
        self.session.add(webhook)
        await self.session.flush()
        return webhook

    async def list_enabled_for_channel(
        self, channel_id: str, event_type: str | None = None
    ) -> list[WebhookTable]:
        """Enabled webhooks of a channel whose filter matches ``event_type``."""
        stmt = select(WebhookTable).where(
            WebhookTable.channel_id == channel_id,
            WebhookTable.enabled.is_(True),
        )
        result = await self.session.execute(stmt)
        webhooks = list(result.scalars())
        if event_type is None:
            return webhooks
        return [w for w in webhooks if "all" in w.events or event_type in w.events]


class PushSubscriptionRepository(BaseRepository):
    """Browser push subscriptions."""

    async def upsert(
        self,
        organization_id: str,
        user_id: str,
        endpoint: str,
        p256dh_key: str,
        auth_key: str,
        channel_ids: Sequence[str] | None = None,
    ) -> PushSubscriptionTable:
        """Create or refresh the subscription for (user, endpoint)."""
        existing = await self.get_by_endpoint(user_id, endpoint)
        if existing is not None:
            existing.organization_id = organization_id
            existing.p256dh_key = p256dh_key
            existing.auth_key = auth_key
            if channel_ids is not None:
                existing.channel_ids = list(channel_ids)
            await self.session.flush()
            return existing

        subscription = PushSubscriptionTable(
            organization_id=organization_id,
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key=p256dh_key,
            auth_key=auth_key,
            channel_ids=list(channel_ids or []),
        )
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def get_by_endpoint(self, user_id: str, endpoint: str) -> PushSubscriptionTable | None:
        stmt = select(PushSubscriptionTable).where(
            PushSubscriptionTable.user_id == user_id,
            PushSubscriptionTable.endpoint == endpoint,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[PushSubscriptionTable]:
        stmt = select(PushSubscriptionTable).where(PushSubscriptionTable.user_id == user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def list_for_organization(self, organization_id: str) -> list[PushSubscriptionTable]:
        stmt = select(PushSubscriptionTable).where(
            PushSubscriptionTable.organization_id == organization_id
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).where(PushSubscriptionTable.user_id == user_id)
        return int((await self.session.execute(stmt)).scalar_one())

    async def delete(self, subscription_id: str) -> bool:
        result = await self.session.execute(
            delete(PushSubscriptionTable).where(PushSubscriptionTable.id == subscription_id)
        )
        return bool(result.rowcount)

    async def delete_by_endpoint(self, user_id: str, endpoint: str) -> bool:
        result = await self.session.execute(
            delete(PushSubscriptionTable).where(
                PushSubscriptionTable.user_id == user_id,
                PushSubscriptionTable.endpoint == endpoint,
            )
        )
        return bool(result.rowcount)

    async def delete_all_for_user(self, user_id: str) -> int:
        result = await self.session.execute(
            delete(PushSubscriptionTable).where(PushSubscriptionTable.user_id == user_id)
        )
        return result.rowcount or 0

    async def subscribe_channels(
        self, user_id: str, endpoint: str, channel_ids: Iterable[str]
    ) -> PushSubscriptionTable | None:
        """Add channels to a subscription's interest list."""
        subscription = await self.get_by_endpoint(user_id, endpoint)
        if subscription is None:
            return None
        merged = list(subscription.channel_ids)
        merged.extend(c for c in channel_ids if c not in merged)
        subscription.channel_ids = merged
        await self.session.flush()
        return subscription

    async def unsubscribe_channels(
        self, user_id: str, endpoint: str, channel_ids: Iterable[str]
    ) -> PushSubscriptionTable | None:
        """Remove channels from a subscription's interest list."""
        subscription = await self.get_by_endpoint(user_id, endpoint)
        if subscription is None:
            return None
        removed = set(channel_ids)
        subscription.channel_ids = [c for c in subscription.channel_ids if c not in removed]
        await self.session.flush()
        return subscription
