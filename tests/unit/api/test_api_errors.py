"""Tests for the uniform error body."""

import httpx
import pytest

from beacon.api.errors import (
    BadRequestError,
    NotFoundError,
    TooManyRequestsError,
    validation_details,
)


class TestErrorBodies:
    """Test error rendering."""

    def test_optional_fields_omitted(self) -> None:
        """Bodies leave out empty message and details."""
        body = NotFoundError("Channel").to_body("req-1")
        assert body == {
            "success": False,
            "error": "Not found",
            "message": "Channel not found",
            "requestId": "req-1",
        }

    def test_details_kept(self) -> None:
        """Validation details are carried as given."""
        body = BadRequestError(details=[{"path": "title", "message": "required"}]).to_body(None)
        assert body["error"] == "Validation error"
        assert body["details"] == [{"path": "title", "message": "required"}]
        assert "message" not in body

    def test_rate_limit_headers(self) -> None:
        """429 errors carry the supplied headers."""
        error = TooManyRequestsError({"Retry-After": "60"})
        assert error.status_code == 429
        assert error.headers == {"Retry-After": "60"}

    def test_validation_details_drop_location_prefix(self) -> None:
        """Paths are dotted and skip the body/query marker."""
        details = validation_details(
            [{"loc": ("body", "events", 0, "title"), "msg": "Field required"}]
        )
        assert details == [{"path": "events.0.title", "message": "Field required"}]


class TestErrorResponses:
    """Test errors rendered by the application."""

    @pytest.mark.asyncio
    async def test_unknown_route(self, client: httpx.AsyncClient) -> None:
        """Framework 404s use the same shape and echo the request id."""
        response = await client.get("/nope", headers={"x-request-id": "req-42"})

        assert response.status_code == 404
        assert response.headers["x-request-id"] == "req-42"
        body = response.json()
        assert body["success"] is False
        assert body["requestId"] == "req-42"

    @pytest.mark.asyncio
    async def test_validation_error(self, api_client: httpx.AsyncClient) -> None:
        """Invalid bodies answer 400 with per-field details."""
        response = await api_client.post("/api/v1/events", json={"channelName": "deploys"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation error"
        assert {"path": "title", "message": "Field required"} in body["details"]

    @pytest.mark.asyncio
    async def test_generated_request_id(self, client: httpx.AsyncClient) -> None:
        """Requests without an id get one."""
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert len(response.headers["x-request-id"]) == 36
