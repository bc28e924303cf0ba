"""Local client: session pointer, profile, data buckets and sync.

Learn: ClientSessionManager is the entry point. Storage and sync
delivery are injected so the same manager runs against a JSON file
(CLI), an in-memory dict (tests) or anything else shaped like
localStorage.
"""

from subtracker.client.session import ClientSessionManager
from subtracker.client.store import JsonFileStore, LocalStore, MemoryStore
from subtracker.client.sync import HttpSyncTarget, LoggingSyncTarget, SyncTarget

__all__ = [
    "ClientSessionManager",
    "HttpSyncTarget",
    "JsonFileStore",
    "LocalStore",
    "LoggingSyncTarget",
    "MemoryStore",
    "SyncTarget",
]
