"""Health check endpoint.

Learn: Reports the server plus each backing service. The database is
required; Redis only feeds the rate limiter, so "unavailable" there makes
the status "degraded" rather than failing the check. Failure details go
to the log, not the response.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from subtracker import __version__
from subtracker.cache import get_redis
from subtracker.db.engine import get_db

logger = structlog.get_logger()

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("health.database_error")
        return "error"
    return "ok"


async def _check_redis() -> str:
    try:
        redis = get_redis()
    except RuntimeError:
        return "unavailable"
    try:
        await redis.ping()
    except Exception:
        logger.exception("health.redis_error")
        return "error"
    return "ok"


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {
        "server": "ok",
        "database": await _check_database(db),
        "redis": await _check_redis(),
    }
    status = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, "version": __version__, **checks}
