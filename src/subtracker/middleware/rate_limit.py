"""Rate limiting middleware — Redis fixed window per minute.

Learn: Each client IP gets one counter per bucket per minute, keyed
"subtracker:rl:{ip}:{bucket}:{minute}". INCR and EXPIRE go through one
transactional pipeline so a counter can never be left without a TTL.
Login and register share the "auth" bucket with a much lower limit than
the rest of the API, which slows down credential stuffing.

Skipped entirely while Redis isn't initialized (e.g., in tests), and
fails open if Redis errors mid-request.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from subtracker.cache import get_redis

logger = structlog.get_logger()

AUTH_PATHS = ("/api/v1/auth/login", "/api/v1/auth/register")
WINDOW_SECONDS = 60


def _bucket(path: str) -> str:
    return "auth" if path.startswith(AUTH_PATHS) else "api"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request budget per minute, stricter for auth endpoints."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 5):
        super().__init__(app)
        self.limits = {"api": default_rpm, "auth": auth_rpm}

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket = _bucket(request.url.path)
        limit = self.limits[bucket]

        now = time.time()
        window = int(now // WINDOW_SECONDS)
        reset_in = WINDOW_SECONDS - int(now % WINDOW_SECONDS)
        key = f"subtracker:rl:{client_ip}:{bucket}:{window}"

        try:
            async with redis.pipeline(transaction=True) as pipe:
                count, _ = await pipe.incr(key).expire(key, WINDOW_SECONDS * 2).execute()
        except Exception as e:
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > limit:
            logger.info("rate_limit.exceeded", bucket=bucket, ip=client_ip, count=count)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests",
                    "message": "Rate limit exceeded. Try again later.",
                },
                headers={"Retry-After": str(reset_in)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        response.headers["X-RateLimit-Reset"] = str(reset_in)
        return response
