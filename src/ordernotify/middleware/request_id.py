"""Request ID middleware — unique ID per request for tracing.

Learn: Every HTTP request gets a UUID, either from the incoming
X-Request-ID header or auto-generated. The ID, method and path are bound
to structlog's contextvars so every log line for the request carries
them, including the broker's connect/disconnect lines for an SSE stream.

BaseHTTPMiddleware only wraps HTTP; WebSocket handshakes pass through.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a unique request ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
