"""Channel directory: human-readable name to stable channel id.

Names are slugified before lookup so equivalent spellings ("Deploys",
"deploys", "DEPLOYS") collapse onto one channel. Each call runs in its own
short transaction so a newly created channel is committed before any event
referencing it is written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.channels.slug import slugify
from beacon.persistence.repositories import ChannelRepository, OrganizationRepository
from beacon.persistence.tables import ChannelTable

logger = logging.getLogger(__name__)


class InvalidChannelNameError(ValueError):
    """Channel name is empty once slugified."""


@dataclass(frozen=True, slots=True)
class ChannelRef:
    """Detached view of a channel row."""

    id: str
    name: str
    project_id: str
    organization_id: str

    @classmethod
    def from_row(cls, row: ChannelTable) -> ChannelRef:
        return cls(
            id=row.id,
            name=row.name,
            project_id=row.project_id,
            organization_id=row.organization_id,
        )


def normalize_channel_name(name: str) -> str:
    """Slugify a channel name, rejecting names with nothing left."""
    slug = slugify(name)
    if not slug:
        raise InvalidChannelNameError(f"Channel name {name!r} has no usable characters")
    return slug


class ChannelDirectory:
    """Get-or-create channel resolution."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_or_create(
        self,
        project_id: str,
        organization_id: str,
        name: str,
        icon: str | None = None,
        description: str | None = None,
    ) -> ChannelRef:
        """Resolve a channel by name within a project, creating it if absent."""
        slug = normalize_channel_name(name)

        async with self.session_factory() as session:
            repo = ChannelRepository(session)
            existing = await repo.get_by_name(project_id, slug)
            if existing is not None:
                return ChannelRef.from_row(existing)

            try:
                created = await repo.create(project_id, organization_id, slug, icon, description)
                await session.commit()
            except IntegrityError:
                # Lost a race with a concurrent creator of the same name
                await session.rollback()
                winner = await repo.get_by_name(project_id, slug)
                if winner is None:
                    raise
                return ChannelRef.from_row(winner)

            logger.info(
                f"Channel created: {slug}",
                extra={
                    "channel_id": created.id,
                    "project_id": project_id,
                    "organization_id": organization_id,
                    "original_name": name,
                },
            )
            return ChannelRef.from_row(created)

    async def resolve_many(
        self, project_id: str, organization_id: str, names: Iterable[str]
    ) -> dict[str, ChannelRef]:
        """Resolve many names with one lookup, creating only the missing ones.

        Returns:
            Mapping of slugified name to channel
        """
        slugs = {normalize_channel_name(name) for name in names}

        async with self.session_factory() as session:
            found = await ChannelRepository(session).get_many_by_names(project_id, slugs)
            resolved = {slug: ChannelRef.from_row(row) for slug, row in found.items()}

        for slug in sorted(slugs - resolved.keys()):
            resolved[slug] = await self.get_or_create(project_id, organization_id, slug)
        return resolved

    async def get(self, channel_id: str, organization_id: str) -> ChannelRef | None:
        """Live channel owned by the organization."""
        async with self.session_factory() as session:
            row = await ChannelRepository(session).get_by_id(channel_id, organization_id)
            return ChannelRef.from_row(row) if row is not None else None

    async def retention_tier(self, organization_id: str) -> str:
        async with self.session_factory() as session:
            return await OrganizationRepository(session).get_retention_tier(organization_id)

    async def retention_tiers(self, organization_ids: Iterable[str]) -> dict[str, str]:
        async with self.session_factory() as session:
            return await OrganizationRepository(session).get_retention_tiers(organization_ids)
