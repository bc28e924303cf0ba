"""Client form validation.

Learn: The sign-in and sign-up forms use the same rules as the server
(email format, password strength, name length) so users see errors
before a round trip. Field-level checks run debounced while typing:
each keystroke cancels the pending check for that field and arms a new
one, so only the last value in a burst is validated.
"""

import asyncio
from typing import Any, Callable, Optional

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError

from subtracker.auth.password import password_strength_errors
from subtracker.config import settings
from subtracker.schemas.auth import check_email, check_name, validation_error_from_pydantic


class SignInForm(BaseModel):
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


class SignUpForm(BaseModel):
    email: str
    password: str
    name: str

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

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return check_name(v, "Name")


def validate_form(form: type[BaseModel], **values: Any) -> BaseModel:
    """Build the form or raise our ValidationError with per-field messages."""
    try:
        return form(**values)
    except PydanticValidationError as e:
        raise validation_error_from_pydantic(e.errors())


def sign_up_field_errors(field: str, value: Any) -> list[str]:
    """Messages for a single sign-up field (empty list = valid)."""
    if field == "password":
        return password_strength_errors(value or "")
    try:
        if field == "email":
            check_email(value or "")
        elif field == "name":
            check_name(value or "", "Name")
    except ValueError as e:
        return [str(e)]
    return []


class DebouncedValidator:
    """Per-field debounced validation.

    schedule() cancels whatever is pending for that field before arming
    a new delayed check. Results land in `errors` (fields with no errors
    are absent).
    """

    def __init__(
        self,
        validate: Callable[[str, Any], list[str]] = sign_up_field_errors,
        delay: Optional[float] = None,
    ):
        self._validate = validate
        self.delay = settings.validation_debounce_seconds if delay is None else delay
        self._pending: dict[str, asyncio.Task] = {}
        self.errors: dict[str, list[str]] = {}

    def schedule(self, field: str, value: Any) -> asyncio.Task:
        self.cancel(field)
        task = asyncio.get_running_loop().create_task(self._run(field, value))
        self._pending[field] = task
        return task

    def cancel(self, field: str) -> None:
        task = self._pending.pop(field, None)
        if task and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for field in list(self._pending):
            self.cancel(field)

    def pending(self) -> list[str]:
        return [f for f, t in self._pending.items() if not t.done()]

    async def flush(self) -> dict[str, list[str]]:
        """Wait for every pending check and return the collected errors."""
        tasks = [t for t in self._pending.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return dict(self.errors)

    async def _run(self, field: str, value: Any) -> list[str]:
        await asyncio.sleep(self.delay)
        messages = self._validate(field, value)
        if messages:
            self.errors[field] = messages
        else:
            self.errors.pop(field, None)
        if self._pending.get(field) is asyncio.current_task():
            del self._pending[field]
        return messages
