"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and the public auth routes (register, login) are open;
the protected auth routes declare Depends(get_current_user) themselves
because they need the identity, not just the gate.
"""

from fastapi import APIRouter

from subtracker.api.auth import router as auth_router
from subtracker.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
