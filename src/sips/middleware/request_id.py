"""Request ID middleware — generates or propagates X-Request-Id.

The id is bound to the structlog context for the request, exposed as
``request.state.request_id`` and recorded on ledger rows the request writes.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"
# Ledger column width
MAX_REQUEST_ID_LENGTH = 128
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:\-]+$")


def resolve_request_id(header_value: str | None) -> str:
    """Use the caller's id when it is a sane token, otherwise mint a UUID."""
    if header_value:
        candidate = header_value.strip()[:MAX_REQUEST_ID_LENGTH]
        if _VALID_REQUEST_ID.match(candidate):
            return candidate
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Ensure every request has a unique X-Request-Id header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
