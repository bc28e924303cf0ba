"""Request ID middleware: one trace id per request, plus an access log line.

Learn: The id comes from an incoming X-Request-ID header or is generated.
It's bound to structlog's contextvars together with method and path, so
every auth log line (auth.logged_in, auth.login_failed, ...) emitted while
handling the request can be matched to it. One "http.request" event per
request records status and duration; the Authorization header is never
logged.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for correlated logging and echo it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(HEADER) or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        logger.info(
            "http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers[HEADER] = request_id
        return response
