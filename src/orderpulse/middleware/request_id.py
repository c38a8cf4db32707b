"""Request ID middleware — unique ID per HTTP request for tracing.

Learn: Every request gets an ID, either from the incoming X-Request-ID
header or a fresh UUID. The ID, method and path are bound to structlog's
contextvars so every log line emitted while handling the request carries
them — including the orders.* events and the broadcast.* events the
request triggers. One access-log line is written on completion.

WebSocket upgrades are not HTTP requests to this middleware; the socket
handler binds its own connection_id instead.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate, bind and propagate a request ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
