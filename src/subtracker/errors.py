"""Error taxonomy shared by the API server and the local client.

Services raise these; the API layer translates them into HTTP responses
with stable status codes. The client re-raises them so callers can tell
field-level failures (ValidationError, InvalidCredentials) apart from
system-level ones (PersistenceError).
"""

from typing import Optional


class SubTrackerError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    error = "Internal error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_detail(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(SubTrackerError):
    """Malformed input. Carries one message per offending field."""

    status_code = 400
    error = "Validation failed"

    def __init__(self, fields: dict[str, list[str]]):
        self.fields = fields
        summary = "; ".join(
            f"{name}: {msg}" for name, msgs in fields.items() for msg in msgs
        )
        super().__init__(summary)

    def to_detail(self) -> dict:
        return {
            "error": self.error,
            "details": [
                {"field": name, "message": msg}
                for name, msgs in self.fields.items()
                for msg in msgs
            ],
        }


class DuplicateUser(SubTrackerError):
    status_code = 409
    error = "Registration failed"

    def __init__(self, message: str = "User with this email already exists"):
        super().__init__(message)


class AuthenticationFailed(SubTrackerError):
    """Bad login. Same message for unknown email, inactive user and wrong password."""

    status_code = 401
    error = "Authentication failed"

    def __init__(self):
        super().__init__("Invalid email or password")


class Unauthenticated(SubTrackerError):
    status_code = 401
    error = "Authentication required"

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class NotFound(SubTrackerError):
    status_code = 404
    error = "Not found"


class PersistenceError(SubTrackerError):
    """Local storage read, write or parse failure."""

    error = "Storage failure"

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class InvalidCredentials(SubTrackerError):
    """Local sign-in failure (no matching account or bad credential)."""

    status_code = 401
    error = "Invalid credentials"

    def __init__(self):
        super().__init__("Invalid credentials")
