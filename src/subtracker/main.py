"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis pool, DB engine).
Middleware, CORS, exception handlers and routers all registered here.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subtracker import __version__
from subtracker.api import api_router
from subtracker.config import settings
from subtracker.schemas.auth import validation_error_from_pydantic

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "subtracker.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from subtracker.cache import close_redis, init_redis
    try:
        await init_redis()
        logger.info("subtracker.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("subtracker.redis_unavailable", error=str(e))
        # Redis is optional — app works without rate limiting

    from subtracker.services.auth_service import warm_dummy_hash
    await asyncio.to_thread(warm_dummy_hash)

    yield

    logger.info("subtracker.shutdown")
    await close_redis()

    from subtracker.db.engine import engine
    await engine.dispose()


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies are a 400 with per-field messages."""
    error = validation_error_from_pydantic(exc.errors())
    return JSONResponse(status_code=400, content={"detail": error.to_detail()})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SubTracker API",
        description="Identity and session backend for the SubTracker finance dashboard",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RequestId → Security → RateLimit → handler
    # RateLimit sits innermost so its 429s still pass through the outer layers.

    from subtracker.middleware.rate_limit import RateLimitMiddleware
    from subtracker.middleware.request_id import RequestIdMiddleware
    from subtracker.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: subtracker.main:app)
app = create_app()
