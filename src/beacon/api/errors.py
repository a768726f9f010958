"""API error responses for Beacon.

Every error renders as::

    {"success": false, "error": "...", "message": "...", "details": [...], "requestId": "..."}

``message`` and ``details`` are omitted when empty. ``requestId`` comes
from the correlation middleware.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str | None = None,
        details: list[dict[str, Any]] | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        self.error = error
        self.message = message
        self.details = details
        super().__init__(
            status_code=status_code,
            detail=message or error,
            headers=dict(headers) if headers else None,
        )

    def to_body(self, request_id: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.message:
            body["message"] = self.message
        if self.details is not None:
            body["details"] = self.details
        body["requestId"] = request_id
        return body


class BadRequestError(ApiError):
    """Invalid request (400)."""

    def __init__(
        self,
        message: str | None = None,
        details: list[dict[str, Any]] | None = None,
        error: str = "Validation error",
        headers: Mapping[str, str] | None = None,
    ):
        super().__init__(400, error, message=message, details=details, headers=headers)


class UnauthorizedError(ApiError):
    """Missing or invalid credentials (401)."""

    def __init__(self, message: str = "Invalid or missing authentication credentials"):
        super().__init__(401, "Unauthorized", message=message)


class ForbiddenError(ApiError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(403, "Forbidden", message=message)


class NotFoundError(ApiError):
    """Resource not found (404)."""

    def __init__(self, resource_type: str, identifier: str | None = None):
        message = f"{resource_type} not found"
        if identifier:
            message = f"{resource_type} '{identifier}' not found"
        super().__init__(404, "Not found", message=message)


class TooManyRequestsError(ApiError):
    """Rate limit exceeded (429)."""

    def __init__(self, headers: Mapping[str, str] | None = None):
        super().__init__(
            429,
            "Too many requests",
            message="Rate limit exceeded. Please retry later.",
            headers=headers,
        )


class InternalServerError(ApiError):
    """Internal server error (500)."""

    def __init__(
        self,
        error: str = "Internal server error",
        message: str | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        super().__init__(500, error, message=message, headers=headers)


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def validation_details(errors: list[Any]) -> list[dict[str, Any]]:
    """Flatten pydantic errors into ``{path, message}`` entries."""
    details = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"path": ".".join(loc), "message": error.get("msg", "Invalid value")})
    return details


async def api_error_handler(request: Request, exc: ApiError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(request_id_of(request)),
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    error = BadRequestError(
        details=validation_details(list(exc.errors())),
        headers=getattr(request.state, "rate_limit_headers", None),
    )
    return await api_error_handler(request, error)


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path}",
        extra={"request_id": request_id_of(request)},
    )
    return await api_error_handler(request, InternalServerError())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    """Render framework errors (unknown route, wrong method) in the same shape."""
    error = ApiError(exc.status_code, str(exc.detail), headers=exc.headers)
    return await api_error_handler(request, error)
