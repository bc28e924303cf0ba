"""SubTracker — subscription and personal-finance tracking backend.

Owns durable identity (registration, login, sessions, bearer tokens)
and the client-side session manager that mirrors it locally.
"""

__version__ = "0.1.0"
