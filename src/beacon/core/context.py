"""Explicit request context.

A ``RequestContext`` is built once per request (or per background job) and
passed down every call chain: ingestion, fan-out and logging. Nothing reads
request-scoped values from process-wide state.

Example:
    ctx = RequestContext(request_id="req-1", organization_id="org_1")
    logger.info("Event created", extra=ctx.log_extra(event_id="evt_1"))
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Request-scoped identity and correlation data.

    Attributes:
        request_id: Correlation id for logs and error responses
        organization_id: Tenant the request acts on
        project_id: Project bound to the API key, if any
        api_key_id: API key used to authenticate, if any
        user_id: Session user, if any
        role: Session user's role in the organization
    """

    request_id: str = field(default_factory=lambda: str(uuid4()))
    organization_id: str | None = None
    project_id: str | None = None
    api_key_id: str | None = None
    user_id: str | None = None
    role: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def log_extra(self, **fields: Any) -> dict[str, Any]:
        """Build the ``extra=`` mapping for a log call."""
        extra: dict[str, Any] = {"request_id": self.request_id}
        if self.organization_id:
            extra["organization_id"] = self.organization_id
        if self.project_id:
            extra["project_id"] = self.project_id
        if self.api_key_id:
            extra["api_key_id"] = self.api_key_id
        if self.user_id:
            extra["user_id"] = self.user_id
        extra.update(fields)
        return extra

    def with_scope(self, **changes: Any) -> RequestContext:
        """Return a copy with some fields replaced."""
        return replace(self, **changes)


def background_context(organization_id: str | None = None, **fields: Any) -> RequestContext:
    """Context for work that does not originate from an HTTP request."""
    return RequestContext(request_id=f"job-{uuid4()}", organization_id=organization_id, **fields)
