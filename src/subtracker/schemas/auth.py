"""Pydantic schemas for registration, login and profile.

Learn: Wire format is camelCase (firstName, expiresIn) because the
single-page app consumes it directly; Python code uses snake_case.
alias_generator + populate_by_name gives both, and FastAPI serializes
responses by alias.

Request validation failures are reported as 400 with one entry per
field (see validation_error_from_pydantic), not FastAPI's default 422.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from subtracker.auth.password import password_strength_errors
from subtracker.errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_MAX_LENGTH = 100


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_email(value: str) -> str:
    value = normalize_email(value)
    if not EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email address")
    return value


def check_name(value: str, label: str) -> str:
    value = value.strip()
    if not 1 <= len(value) <= NAME_MAX_LENGTH:
        raise ValueError(
            f"{label} is required and must be less than {NAME_MAX_LENGTH} characters"
        )
    return value


def validation_error_from_pydantic(errors: Iterable[dict[str, Any]]) -> ValidationError:
    """Collapse pydantic error dicts into our per-field ValidationError."""
    fields: dict[str, list[str]] = {}
    for err in errors:
        loc = [part for part in err.get("loc", ()) if part != "body"]
        name = str(loc[-1]) if loc else "body"
        ctx_error = (err.get("ctx") or {}).get("error")
        message = str(ctx_error) if ctx_error else err.get("msg", "Invalid value")
        fields.setdefault(name, []).append(message)
    return ValidationError(fields)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ─── Requests ────────────────────────────────────────────


class RegisterRequest(CamelModel):
    email: str
    password: str
    first_name: str
    last_name: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        errors = password_strength_errors(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, v: str) -> str:
        return check_name(v, "First name")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, v: str) -> str:
        return check_name(v, "Last name")


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


# ─── Responses ───────────────────────────────────────────


class UserRead(CamelModel):
    """Sanitized user — never includes the password hash."""
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    created_at: Optional[datetime] = None


class ProfileRead(CamelModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    timezone: str
    currency: str
    date_format: str
    notification_preferences: dict
    monthly_budget: Decimal
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class AuthResponse(CamelModel):
    message: str
    user: UserRead
    token: str
    expires_in: str


class ProfileResponse(CamelModel):
    user: ProfileRead


class RefreshResponse(CamelModel):
    message: str
    token: str
    expires_in: str


class MessageResponse(CamelModel):
    message: str
