"""Security headers middleware.

Learn: Every response gets the baseline headers below. Auth responses
carry bearer tokens and profile data, so they are additionally marked
uncacheable for browsers and intermediaries. HSTS is only meaningful
when the request actually arrived over HTTPS.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

AUTH_PREFIX = "/api/v1/auth/"

BASELINE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Baseline headers everywhere, no-store on auth routes, HSTS on HTTPS."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = dict(BASELINE_HEADERS)
        if request.url.path.startswith(AUTH_PREFIX):
            headers.update(NO_STORE_HEADERS)
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = HSTS
        response.headers.update(headers)
        return response
