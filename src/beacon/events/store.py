"""HTTP client for the external event store.

The event store is an append-only analytics datastore:
- rows are appended to named datasources (JSON, or NDJSON for batches)
- reads go through named, parameterized query pipes
- deletes take a condition over a datasource

Example:
    client = EventStoreClient(base_url, token)
    result = await client.ingest("events", [row], wait=True)
    result = await client.query_pipe("stream_events", {"channel_id": "ch_1"})
    await client.aclose()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import orjson

from beacon.config import settings

logger = logging.getLogger(__name__)


class EventStoreError(Exception):
    """Transport or HTTP failure talking to the event store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class IngestRejectedError(EventStoreError):
    """The store accepted zero rows of a write."""

    def __init__(self, quarantined_rows: int):
        super().__init__(
            f"Event store accepted no rows ({quarantined_rows} quarantined)"
        )
        self.quarantined_rows = quarantined_rows


@dataclass(frozen=True, slots=True)
class IngestResponse:
    """Accepted and quarantined row counts of a write."""

    successful_rows: int
    quarantined_rows: int


@dataclass(frozen=True, slots=True)
class PipeResult:
    """Rows and metadata returned by a query pipe."""

    data: list[dict[str, Any]]
    meta: dict[str, Any] = field(default_factory=dict)


def _render_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class EventStoreClient:
    """Async client for the event store API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.event_store_url).rstrip("/")
        headers = {}
        resolved_token = token if token is not None else settings.event_store_token
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.event_store_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise EventStoreError(f"Event store request failed: {e}") from e
        if response.is_error:
            raise EventStoreError(
                f"Event store returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    async def ingest(
        self,
        datasource: str,
        rows: Sequence[Mapping[str, Any]],
        wait: bool = False,
    ) -> IngestResponse:
        """Append rows to a datasource.

        A single row is sent as JSON; several rows as NDJSON. With
        ``wait=True`` the store only answers once rows are committed.
        """
        if not rows:
            return IngestResponse(successful_rows=0, quarantined_rows=0)

        params = {"name": datasource}
        if wait:
            params["wait"] = "true"

        if len(rows) == 1:
            content = orjson.dumps(rows[0])
            content_type = "application/json"
        else:
            content = b"\n".join(orjson.dumps(row) for row in rows)
            content_type = "application/x-ndjson"

        response = await self._request(
            "POST",
            "/v0/events",
            params=params,
            content=content,
            headers={"Content-Type": content_type},
        )
        data = response.json()
        return IngestResponse(
            successful_rows=int(data.get("successful_rows", 0)),
            quarantined_rows=int(data.get("quarantined_rows", 0)),
        )

    async def query_pipe(self, name: str, params: Mapping[str, Any] | None = None) -> PipeResult:
        """Run a named pipe.

        Parameters whose value is None are omitted.
        """
        query = {k: _render_param(v) for k, v in (params or {}).items() if v is not None}
        response = await self._request("GET", f"/v0/pipes/{name}.json", params=query)
        payload = response.json()
        if not isinstance(payload, dict):
            return PipeResult(data=list(payload))
        meta = payload.get("meta")
        return PipeResult(
            data=list(payload.get("data") or []),
            meta=meta if isinstance(meta, dict) else {},
        )

    async def delete_data(self, datasource: str, condition: str) -> dict[str, Any]:
        """Delete rows of a datasource matching a SQL condition."""
        response = await self._request(
            "POST",
            f"/v0/datasources/{datasource}/delete",
            data={"delete_condition": condition},
        )
        return response.json() if response.content else {}
