"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user identity from the request.

A bearer token is accepted only if:
1. its signature and expiry verify,
2. the session named by its "sid" claim is still active and unexpired, and
3. the user owning that session has not been deactivated.

Steps 2 and 3 are one primary-key lookup with the user joined in; they
are what let logout and deactivation revoke tokens that are otherwise
still cryptographically valid.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from subtracker.auth.jwt import TokenError, extract_bearer_token, verify_token
from subtracker.db.engine import get_db
from subtracker.db.models import UserSession, as_utc


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: This is the request-scoped auth context handed to services.
    It carries exactly the claims a refreshed token needs to repeat.
    """

    def __init__(self, user_id: str, email: str, session_id: str):
        self.user_id = user_id
        self.email = email
        self.session_id = session_id

    def __repr__(self) -> str:
        return f"CurrentIdentity(user_id={self.user_id!r}, session_id={self.session_id!r})"


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "Authentication failed", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no token).

    Learn: A malformed or revoked token is still a 401 here; only a
    missing Authorization header yields None.
    """
    token = extract_bearer_token(authorization)
    if not token:
        return None

    try:
        payload = verify_token(token)
    except TokenError as e:
        raise _unauthorized(str(e))

    try:
        session_id = uuid.UUID(payload["sid"])
    except (KeyError, ValueError):
        raise _unauthorized("Invalid token: malformed session id")

    result = await db.execute(
        select(UserSession)
        .options(joinedload(UserSession.user))
        .where(UserSession.id == session_id)
    )
    session = result.scalar_one_or_none()
    if (
        session is None
        or not session.is_active
        or as_utc(session.expires_at) <= datetime.now(timezone.utc)
    ):
        raise _unauthorized("Session has been revoked or has expired")
    if str(session.user_id) != payload.get("sub"):
        raise _unauthorized("Invalid token: session does not belong to user")
    # A missing user row is left to the route, which answers 404.
    if session.user is not None and not session.user.is_active:
        raise _unauthorized("User not found or inactive")

    return CurrentIdentity(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        session_id=payload["sid"],
    )


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication required", "message": "No token provided"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
