"""Auth API — registration, login, profile, logout, token refresh.

Learn: Routes for the user identity lifecycle:
- POST /auth/register → create account, first session, bearer token
- POST /auth/login → email/password → new session + bearer token
- GET /auth/profile → current user's profile (bearer token)
- POST /auth/logout → revoke every active session of the user
- POST /auth/refresh → new bearer token for the current session
- GET /auth/health → service descriptor

Domain errors from AuthService become HTTPExceptions here. Anything
unexpected is logged and answered with a generic 500 so internals never
leak into responses.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from subtracker.auth.dependencies import CurrentIdentity, get_current_user
from subtracker.db.engine import get_db
from subtracker.errors import (
    AuthenticationFailed,
    DuplicateUser,
    NotFound,
    SubTrackerError,
    Unauthenticated,
    ValidationError,
)
from subtracker.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    ProfileRead,
    ProfileResponse,
    RefreshResponse,
    RegisterRequest,
    UserRead,
)
from subtracker.services.auth_service import AuthService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def _auth_svc(db=Depends(get_db)) -> AuthService:
    return AuthService(db)


def _http_error(e: SubTrackerError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


def _internal_error(error: str, message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": error, "message": message})


def _client_meta(request: Request) -> tuple[Optional[str], Optional[str]]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    svc: AuthService = Depends(_auth_svc),
):
    """Create a new user account and sign it in."""
    ip, user_agent = _client_meta(request)
    try:
        result = await svc.register(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            ip_address=ip,
            user_agent=user_agent,
        )
    except (ValidationError, DuplicateUser) as e:
        raise _http_error(e)
    except Exception:
        logger.exception("auth.register_error")
        raise _internal_error(
            "Registration failed", "Internal server error during registration"
        )

    return AuthResponse(
        message="User registered successfully",
        user=UserRead.model_validate(result.user),
        token=result.token,
        expires_in=result.expires_in,
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    svc: AuthService = Depends(_auth_svc),
):
    """Login with email and password → bearer token."""
    ip, user_agent = _client_meta(request)
    try:
        result = await svc.login(
            email=body.email,
            password=body.password,
            ip_address=ip,
            user_agent=user_agent,
        )
    except (ValidationError, AuthenticationFailed) as e:
        raise _http_error(e)
    except Exception:
        logger.exception("auth.login_error")
        raise _internal_error("Login failed", "Internal server error during login")

    return AuthResponse(
        message="Login successful",
        user=UserRead.model_validate(result.user),
        token=result.token,
        expires_in=result.expires_in,
    )


# ─── Profile ─────────────────────────────────────────────


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: AuthService = Depends(_auth_svc),
):
    """Get the current authenticated user's profile."""
    try:
        user = await svc.get_profile(identity)
    except (Unauthenticated, NotFound) as e:
        raise _http_error(e)
    except Exception:
        logger.exception("auth.profile_error", user_id=identity.user_id)
        raise _internal_error("Failed to get profile", "Internal server error")

    return ProfileResponse(user=ProfileRead.model_validate(user))


# ─── Logout ──────────────────────────────────────────────


@router.post("/logout", response_model=MessageResponse)
async def logout(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: AuthService = Depends(_auth_svc),
):
    """Invalidate every active session of the current user (all devices)."""
    try:
        await svc.logout(identity)
    except Unauthenticated as e:
        raise _http_error(e)
    except Exception:
        logger.exception("auth.logout_error", user_id=identity.user_id)
        raise _internal_error("Logout failed", "Internal server error during logout")

    return MessageResponse(message="Logout successful")


# ─── Refresh ─────────────────────────────────────────────


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: AuthService = Depends(_auth_svc),
):
    """Issue a fresh token for the current session."""
    try:
        result = await svc.refresh_token(identity)
    except Unauthenticated as e:
        raise _http_error(e)
    except Exception:
        logger.exception("auth.refresh_error", user_id=identity.user_id)
        raise _internal_error("Token refresh failed", "Internal server error")

    return RefreshResponse(
        message="Token refreshed successfully",
        token=result.token,
        expires_in=result.expires_in,
    )


# ─── Health ──────────────────────────────────────────────


@router.get("/health")
async def auth_health():
    """Describe the auth service and its endpoints."""
    return {
        "service": "Authentication Service",
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoints": {
            "public": ["/register", "/login"],
            "protected": ["/profile", "/logout", "/refresh"],
        },
    }
