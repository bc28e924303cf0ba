"""Local key/value storage for the client session manager.

Learn: Mirrors browser localStorage: string keys and string values, every
value JSON-serialized by the caller. Two backends:
- MemoryStore: process-local dict (tests, embedding)
- JsonFileStore: one JSON object on disk, rewritten atomically on each write

Any read, write or parse failure surfaces as PersistenceError.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator, Optional

from subtracker.errors import PersistenceError

# ─── Keys ────────────────────────────────────────────────

SESSION_KEY = "subtracker_session"
ACCOUNTS_KEY = "subtracker_users"


def profile_key(user_id: str) -> str:
    return f"subtracker_user_{user_id}"


def last_sync_key(user_id: str) -> str:
    return f"subtracker_last_sync_{user_id}"


# bucket name → (key prefix, empty value)
BUCKETS: dict[str, tuple[str, Any]] = {
    "budgetPods": ("subtracker_enhanced_pods_", []),
    "transactions": ("subtracker_transactions_", []),
    "subscriptions": ("subtracker_data_", {}),
    "investments": ("subtracker_investments_", []),
    "notebooks": ("subtracker_notebooks_", []),
}


def bucket_key(name: str, user_id: str) -> str:
    try:
        prefix, _ = BUCKETS[name]
    except KeyError:
        raise PersistenceError(f"Unknown data bucket: {name}")
    return f"{prefix}{user_id}"


# ─── Backends ────────────────────────────────────────────


class LocalStore:
    """localStorage-shaped interface. Subclasses implement the four primitives."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> Iterator[str]:
        raise NotImplementedError

    def __contains__(self, key: str) -> bool:
        return self.get_item(key) is not None

    # JSON helpers

    def read_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt value under {key}: {e}", key=key)

    def write_json(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key} is not serializable: {e}", key=key)
        self.set_item(key, raw)


class MemoryStore(LocalStore):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class JsonFileStore(LocalStore):
    """All keys in a single JSON file. Loaded lazily, written through."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path).expanduser()
        self._data: Optional[dict[str, str]] = None

    def _load(self) -> dict[str, str]:
        if self._data is None:
            try:
                text = self.path.read_text(encoding="utf-8")
            except FileNotFoundError:
                self._data = {}
                return self._data
            except OSError as e:
                raise PersistenceError(f"Cannot read {self.path}: {e}")
            try:
                data = json.loads(text) if text.strip() else {}
            except ValueError as e:
                raise PersistenceError(f"Corrupt store file {self.path}: {e}")
            if not isinstance(data, dict):
                raise PersistenceError(f"Corrupt store file {self.path}: not an object")
            self._data = data
        return self._data

    def _flush(self, data: dict[str, str]) -> None:
        """Atomic replace via a temp file, which is removed again on failure."""
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
            raise PersistenceError(f"Cannot write {self.path}: {e}")

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    # Writes build the next state on a copy and only adopt it once it is on
    # disk, so a failed write leaves memory and file in agreement.

    def set_item(self, key: str, value: str) -> None:
        data = {**self._load(), key: value}
        self._flush(data)
        self._data = data

    def remove_item(self, key: str) -> None:
        current = self._load()
        if key not in current:
            return
        data = {k: v for k, v in current.items() if k != key}
        self._flush(data)
        self._data = data

    def keys(self) -> Iterator[str]:
        return iter(list(self._load()))
