"""Request id middleware.

Takes the caller's ``x-request-id`` (or a load balancer's id) or generates
one, stores it on ``request.state.request_id`` for handlers to copy into
their ``RequestContext``, and echoes it on the response.
"""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "x-request-id"
MAX_REQUEST_ID_LENGTH = 128


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Assigns every request an id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER) or request.headers.get(
            "x-amzn-requestid"  # AWS ALB
        )
        if supplied and len(supplied) <= MAX_REQUEST_ID_LENGTH:
            request_id = supplied
        else:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
