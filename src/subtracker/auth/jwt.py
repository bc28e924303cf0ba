"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. The token
carries the user id ("sub"), email and the id of the session it was
issued for ("sid"). Lifetime comes from settings.jwt_expires_in, written
the same way as the JWT_EXPIRES_IN convention: "7d", "12h", "30m", "45s".
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from subtracker.config import settings

DEFAULT_LIFETIME = timedelta(days=7)

_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def parse_expires_in(value: str) -> timedelta:
    """Turn "7d" / "12h" / "30m" / "45s" into a timedelta.

    Anything unparseable falls back to 7 days.
    """
    match = re.fullmatch(r"\s*(\d+)\s*([dhms])\s*", value or "")
    if not match:
        return DEFAULT_LIFETIME
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def token_expiration(now: Optional[datetime] = None) -> datetime:
    """When a token (and the session it belongs to) issued now expires."""
    now = now or datetime.now(timezone.utc)
    return now + parse_expires_in(settings.jwt_expires_in)


def create_access_token(
    user_id: str,
    email: str,
    session_id: str,
    expires_at: Optional[datetime] = None,
) -> str:
    """Create a signed bearer token bound to a user and a session."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "sid": session_id,
        "type": "access",
        "exp": expires_at or token_expiration(issued_at),
        "iat": issued_at,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type") != "access" or not payload.get("sid"):
        raise TokenError("Invalid token: missing session claims")
    return payload


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an "Authorization: Bearer <token>" header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:] or None
