"""Auth service — registration, login, profile, logout and token refresh.

Learn: Per-user lifecycle:

    Unregistered → Registered → Active session(s) → [expired | logged out]
                                     ↑___________________________|

Registration happens once. Every successful register/login writes exactly
one user_sessions row (with the caller's IP and user agent) and issues a
bearer token bound to it. Logout flips every active session of the user
to inactive in one UPDATE, which revokes all tokens on all devices.
Nothing here ever deletes a user or session row.

The service raises domain errors (subtracker.errors); the API layer maps
them to HTTP statuses.
"""

import asyncio
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from subtracker.audit.store import CREATE, REVOKE, AuditStore
from subtracker.auth.dependencies import CurrentIdentity
from subtracker.auth.jwt import create_access_token, token_expiration
from subtracker.auth.password import hash_password, verify_password
from subtracker.config import settings
from subtracker.db.models import User, UserSession
from subtracker.errors import (
    AuthenticationFailed,
    DuplicateUser,
    NotFound,
    Unauthenticated,
)
from subtracker.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    validation_error_from_pydantic,
)

logger = structlog.get_logger()


@dataclass
class AuthResult:
    """Outcome of a successful register or login."""
    user: User
    session: UserSession
    token: str
    expires_in: str


@dataclass
class RefreshResult:
    token: str
    expires_in: str
    expires_at: datetime


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    """A throwaway bcrypt hash so unknown-email logins cost as much as real ones."""
    return hash_password(secrets.token_urlsafe(16))


def _check_against_dummy(password: str) -> None:
    verify_password(password, _dummy_hash())


def warm_dummy_hash() -> None:
    """Compute the dummy hash ahead of the first unknown-email login."""
    _dummy_hash()


class AuthService:
    """Owns durable identity: users, sessions and bearer tokens."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditStore(db)

    # ─── Register ─────────────────────────────────────────

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """Create a user, open its first session and issue a token.

        Learn: The pre-check gives a clean 409 in the common case; the
        unique constraint on users.email is what actually guarantees
        uniqueness when two registrations race.
        """
        try:
            data = RegisterRequest(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
            )
        except PydanticValidationError as e:
            raise validation_error_from_pydantic(e.errors())

        if await self._find_by_email(data.email):
            raise DuplicateUser()

        password_hash = await asyncio.to_thread(hash_password, data.password)
        user = User(
            id=uuid.uuid4(),
            email=data.email,
            password_hash=password_hash,
            first_name=data.first_name,
            last_name=data.last_name,
            email_verified=True,  # no verification mail flow yet
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info("auth.register_race_lost", email=data.email)
            raise DuplicateUser()

        await self.audit.append(
            table_name="users",
            record_id=str(user.id),
            action=CREATE,
            user_id=user.id,
            new_values={
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
        result = await self._open_session(user, ip_address, user_agent)
        await self.db.commit()

        logger.info("auth.registered", user_id=str(user.id), ip=ip_address)
        return result

    # ─── Login ────────────────────────────────────────────

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """Check credentials and open a fresh session.

        Learn: Unknown email, inactive account and wrong password all
        raise the same AuthenticationFailed so responses can't be used
        to discover which emails are registered. Unknown emails are still
        checked against a dummy hash to keep response times comparable.
        """
        try:
            data = LoginRequest(email=email, password=password)
        except PydanticValidationError as e:
            raise validation_error_from_pydantic(e.errors())

        user = await self._find_by_email(data.email)
        if not user or not user.is_active:
            await asyncio.to_thread(_check_against_dummy, data.password)
            logger.info("auth.login_failed", reason="unknown_or_inactive")
            raise AuthenticationFailed()

        valid = await asyncio.to_thread(verify_password, data.password, user.password_hash)
        if not valid:
            logger.info("auth.login_failed", reason="bad_password", user_id=str(user.id))
            raise AuthenticationFailed()

        result = await self._open_session(user, ip_address, user_agent)
        await self.db.commit()

        logger.info("auth.logged_in", user_id=str(user.id), ip=ip_address)
        return result

    # ─── Profile ──────────────────────────────────────────

    async def get_profile(self, identity: Optional[CurrentIdentity]) -> User:
        if identity is None:
            raise Unauthenticated()
        user = await self.db.get(User, uuid.UUID(identity.user_id))
        if user is None:
            raise NotFound("User profile not found")
        return user

    # ─── Logout ───────────────────────────────────────────

    async def logout(self, identity: Optional[CurrentIdentity]) -> int:
        """Revoke every active session of the user. Returns how many were revoked."""
        if identity is None:
            raise Unauthenticated()
        user_id = uuid.UUID(identity.user_id)

        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active == True)  # noqa: E712
            .values(is_active=False)
        )
        revoked = result.rowcount or 0
        if revoked:
            await self.audit.append(
                table_name="user_sessions",
                record_id=identity.session_id,
                action=REVOKE,
                user_id=user_id,
                old_values={"is_active": True},
                new_values={"is_active": False, "sessions_revoked": revoked},
            )
        await self.db.commit()

        logger.info("auth.logged_out", user_id=identity.user_id, sessions_revoked=revoked)
        return revoked

    # ─── Refresh ──────────────────────────────────────────

    async def refresh_token(self, identity: Optional[CurrentIdentity]) -> RefreshResult:
        """Issue a new token with the same claims and the default lifetime.

        Learn: Refresh is not a login, so no session row is written. The existing
        session's expiry moves forward with the token, otherwise the
        refreshed token would be rejected once the original lifetime ran out.
        """
        if identity is None:
            raise Unauthenticated()

        expires_at = token_expiration()
        await self.db.execute(
            update(UserSession)
            .where(UserSession.id == uuid.UUID(identity.session_id))
            .values(expires_at=expires_at)
        )
        await self.db.commit()

        token = create_access_token(
            identity.user_id,
            identity.email,
            identity.session_id,
            expires_at=expires_at,
        )
        logger.info("auth.token_refreshed", user_id=identity.user_id)
        return RefreshResult(
            token=token,
            expires_in=settings.jwt_expires_in,
            expires_at=expires_at,
        )

    # ─── Helpers ──────────────────────────────────────────

    async def _find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def _open_session(
        self,
        user: User,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> AuthResult:
        """Stage a session row and mint the token bound to it."""
        expires_at = token_expiration(datetime.now(timezone.utc))
        session = UserSession(
            id=uuid.uuid4(),
            user_id=user.id,
            session_token=secrets.token_urlsafe(32),
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            is_active=True,
        )
        self.db.add(session)
        await self.db.flush()

        await self.audit.append(
            table_name="user_sessions",
            record_id=str(session.id),
            action=CREATE,
            user_id=user.id,
            new_values={"expires_at": expires_at.isoformat()},
            ip_address=ip_address,
            user_agent=user_agent,
        )

        token = create_access_token(
            str(user.id), user.email, str(session.id), expires_at=expires_at
        )
        return AuthResult(
            user=user,
            session=session,
            token=token,
            expires_in=settings.jwt_expires_in,
        )
