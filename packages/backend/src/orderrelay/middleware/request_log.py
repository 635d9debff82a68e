"""Request logging middleware — request ID + one log line per mutation.

Learn: Every request gets an ID, either from the incoming X-Request-ID
header or auto-generated. It is bound to structlog's contextvars so it
appears in every log entry for that request, and echoed in the response.

The demo frontend polls GET /orders, so those requests aren't logged;
everything else (POST/PUT/DELETE, health, diagnostics) is.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


def should_log(method: str, path: str) -> bool:
    return method != "GET" or "orders" not in path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Propagate a request ID and log non-polling requests."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if should_log(request.method, request.url.path):
            logger.info(
                "http.request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        return response
