"""User identities kept in the event store.

An identity maps an organization-scoped user id to profile properties and
to any number of aliases (external subject strings such as an email or an
anonymous id). Ingestion resolves an event's ``user_id`` through the alias
pipe so events sent under an alias land on the canonical user.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import orjson

from beacon.config import settings
from beacon.core.context import RequestContext
from beacon.events.models import isoformat_ms
from beacon.events.store import EventStoreClient, EventStoreError

logger = logging.getLogger(__name__)

PIPE_GET_USER_IDENTITY = "get_user_identity"
PIPE_RESOLVE_USER_ALIAS = "resolve_user_alias"


class IdentityService:
    """Upserts and resolves user identities."""

    def __init__(self, client: EventStoreClient):
        self.client = client
        self.datasource = settings.identities_datasource

    async def identify(
        self,
        ctx: RequestContext,
        user_id: str,
        properties: dict[str, Any] | None = None,
        aliases: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Record (or refresh) a user's properties and aliases.

        The store keeps the newest row per user, so each call appends a
        full snapshot. Ingestion does not wait for the commit.
        """
        properties = properties or {}
        now = isoformat_ms(datetime.now(UTC))
        identity_id = str(uuid4())
        row = {
            "id": identity_id,
            "organization_id": ctx.organization_id,
            "user_id": user_id,
            "email": _string_property(properties, "email"),
            "name": _string_property(properties, "name"),
            "properties": orjson.dumps(properties).decode(),
            "aliases": list(aliases),
            "created_at": now,
            "updated_at": now,
        }
        await self.client.ingest(self.datasource, [row], wait=False)

        logger.info(
            "User identity upserted",
            extra=ctx.log_extra(
                identified_user_id=user_id,
                identity_id=identity_id,
                alias_count=len(aliases),
            ),
        )
        return {
            "id": identity_id,
            "userId": user_id,
            "properties": properties,
            "aliases": {"created": list(aliases)},
            "updatedAt": now,
        }

    async def get_identity(self, organization_id: str, user_id: str) -> dict[str, Any] | None:
        result = await self.client.query_pipe(
            PIPE_GET_USER_IDENTITY,
            {"organization_id": organization_id, "user_id": user_id},
        )
        return result.data[0] if result.data else None

    async def resolve_alias(self, organization_id: str, alias: str) -> str | None:
        """Canonical user id for an alias, or None when unmapped.

        Lookup failures are logged and reported as "unmapped".
        """
        try:
            result = await self.client.query_pipe(
                PIPE_RESOLVE_USER_ALIAS,
                {"organization_id": organization_id, "alias": alias},
            )
        except EventStoreError as e:
            logger.warning(
                f"Alias resolution failed, keeping original user id: {e}",
                extra={"organization_id": organization_id},
            )
            return None
        if not result.data:
            return None
        return result.data[0].get("user_id") or None


def _string_property(properties: dict[str, Any], name: str) -> str:
    value = properties.get(name)
    return value if isinstance(value, str) else ""
