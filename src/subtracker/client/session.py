"""Client session manager — the local side of authentication.

Learn: One ClientSessionManager is created at app start and handed to
everything that needs the current user (no module-level global). It owns:

- the session pointer (subtracker_session → {"userId": ...}); its presence
  is the only signal of "signed in"
- the active profile (subtracker_user_<id>)
- the local accounts list (subtracker_users)
- per-user data buckets and the last-sync timestamp

Invariant: after bootstrap() returns, the pointer always references a
stored profile. A missing or unreadable profile is healed by falling back
to the demo profile, which is created at most once per store.

Every public operation is a coroutine and flips `is_loading` while in
flight. Calls are not serialized against each other: two overlapping
sign_in() calls race and the last pointer write wins. That's fine for
one user in one window; multi-window use needs a cross-process lock.
Cancelling a caller does not roll back writes already made.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from subtracker.auth.password import hash_password, verify_password
from subtracker.client.profile import (
    DEMO_USER_ID,
    ClientProfile,
    LocalAccount,
    Preferences,
    demo_profile,
    new_profile,
)
from subtracker.client.store import (
    ACCOUNTS_KEY,
    BUCKETS,
    SESSION_KEY,
    LocalStore,
    bucket_key,
    last_sync_key,
    profile_key,
)
from subtracker.client.sync import LoggingSyncTarget, SyncPayload, SyncResult, SyncTarget
from subtracker.client.validation import SignInForm, SignUpForm, validate_form
from subtracker.config import settings
from subtracker.errors import (
    DuplicateUser,
    InvalidCredentials,
    PersistenceError,
    SubTrackerError,
    Unauthenticated,
    ValidationError,
)
from subtracker.schemas.auth import normalize_email, validation_error_from_pydantic

logger = structlog.get_logger()

LOGIN_PATH = "/login"

# Set once at sign-up, never through update_profile(). email is the
# accounts-list key sign_in() looks up.
IMMUTABLE_PROFILE_FIELDS = {"id", "email", "created_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_navigation(path: str) -> None:
    logger.info("client.navigate", path=path)


def _field_names(model: type, changes: dict[str, Any]) -> dict[str, Any]:
    """Accept snake_case or camelCase keys; reject unknown ones."""
    by_alias = {f.alias: name for name, f in model.model_fields.items() if f.alias}
    out, unknown = {}, {}
    for key, value in changes.items():
        name = key if key in model.model_fields else by_alias.get(key)
        if name is None:
            unknown[key] = ["Unknown field"]
        else:
            out[name] = value
    if unknown:
        raise ValidationError(unknown)
    return out


def _merge(model_obj, changes: dict[str, Any]):
    """Shallow merge, one level deeper for nested models given as dicts."""
    current = model_obj.model_dump()
    for name, value in changes.items():
        nested = getattr(model_obj, name, None)
        if isinstance(value, dict) and hasattr(nested, "model_dump"):
            value = {**nested.model_dump(), **_field_names(type(nested), value)}
        current[name] = value
    try:
        return type(model_obj).model_validate(current)
    except PydanticValidationError as e:
        raise validation_error_from_pydantic(e.errors())


class ClientSessionManager:
    """Explicit session context for the local client.

    Lifecycle: construct, then bootstrap(); the active profile is dropped
    by sign_out(). Consumers read `profile`, `is_authenticated` and
    `is_loading`.
    """

    def __init__(
        self,
        store: LocalStore,
        sync_target: Optional[SyncTarget] = None,
        navigate: Callable[[str], None] = _log_navigation,
        latency: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.sync_target = sync_target or LoggingSyncTarget()
        self.navigate = navigate
        self.latency = settings.client_latency_seconds if latency is None else latency
        self.clock = clock
        self._profile: Optional[ClientProfile] = None
        self._in_flight = 0

    # ─── State ────────────────────────────────────────────

    @property
    def profile(self) -> Optional[ClientProfile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return self._profile is not None

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @asynccontextmanager
    async def _busy(self):
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    async def _network_delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    # ─── Bootstrap ────────────────────────────────────────

    async def bootstrap(self) -> ClientProfile:
        """Restore the stored session, or fall back to the demo profile."""
        async with self._busy():
            try:
                profile = self._restore_session()
                if profile is None:
                    profile = self._load_profile_or_none(DEMO_USER_ID)
                    if profile is None:
                        profile = demo_profile(self.clock())
                        self._save_profile(profile)
                        logger.info("client.demo_profile_created", user_id=profile.id)
                    self._write_pointer(profile.id)
            except SubTrackerError as e:
                logger.warning("client.bootstrap_failed", error=e.message)
                raise
            self._profile = profile
            return profile

    def _restore_session(self) -> Optional[ClientProfile]:
        try:
            pointer = self.store.read_json(SESSION_KEY)
        except PersistenceError as e:
            logger.warning("client.session_pointer_unreadable", error=str(e))
            return None
        if not isinstance(pointer, dict) or not pointer.get("userId"):
            return None
        return self._load_profile_or_none(str(pointer["userId"]))

    def _load_profile_or_none(self, user_id: str) -> Optional[ClientProfile]:
        """Profile for user_id; None if absent or unreadable (logged)."""
        try:
            return self._load_profile(user_id)
        except PersistenceError as e:
            logger.warning("client.profile_unreadable", user_id=user_id, error=str(e))
            return None

    # ─── Sign in / up / out ───────────────────────────────

    async def sign_in(self, email: str, password: str) -> ClientProfile:
        """Activate a locally registered account.

        Raises InvalidCredentials when no account has this email or the
        stored credential doesn't match; accounts without a stored
        credential can't sign in. Malformed input (bad email, empty
        password) is reported the same way.
        """
        async with self._busy():
            try:
                try:
                    form = validate_form(SignInForm, email=email, password=password)
                except ValidationError:
                    raise InvalidCredentials() from None
                await self._network_delay()
                account = self._find_account(form.email)
                valid = (
                    account is not None
                    and account.password_hash is not None
                    and await asyncio.to_thread(
                        verify_password, form.password, account.password_hash
                    )
                )
                if not valid:
                    raise InvalidCredentials()

                profile = self._load_profile(account.id)
                if profile is None:
                    raise PersistenceError(
                        f"No stored profile for account {account.id}",
                        key=profile_key(account.id),
                    )
                self._write_pointer(profile.id)
                self._profile = profile
            except (InvalidCredentials, PersistenceError) as e:
                logger.info("client.sign_in_failed", error=e.message)
                raise

            logger.info("client.signed_in", user_id=profile.id)
            return profile

    async def sign_up(self, email: str, password: str, name: str) -> ClientProfile:
        """Create and activate a new local account.

        Raises ValidationError for malformed input and DuplicateUser when
        the normalized email is already registered in this store.
        """
        async with self._busy():
            try:
                form = validate_form(SignUpForm, email=email, password=password, name=name)
                await self._network_delay()

                accounts = self._accounts()
                if any(a.email == form.email for a in accounts):
                    raise DuplicateUser()

                now = self.clock()
                user_id = self._new_user_id(accounts, now)
                password_hash = await asyncio.to_thread(hash_password, form.password)
                profile = new_profile(user_id, form.email, form.name, now)

                # Profile before account: sign_in keys on the account entry, so
                # a failure in between leaves an unreachable profile, never an
                # account without one.
                self._save_profile(profile)
                accounts.append(
                    LocalAccount(id=user_id, email=form.email, password_hash=password_hash)
                )
                self.store.write_json(ACCOUNTS_KEY, [a.to_json() for a in accounts])
                self._write_pointer(user_id)
                self._profile = profile
            except (ValidationError, DuplicateUser, PersistenceError) as e:
                logger.info("client.sign_up_failed", error=e.message)
                raise

            logger.info("client.signed_up", user_id=user_id)
            return profile

    async def sign_out(self) -> None:
        """Drop the session pointer (the profile stays) and go to the login page."""
        async with self._busy():
            user_id = self._profile.id if self._profile else None
            try:
                self.store.remove_item(SESSION_KEY)
            except SubTrackerError as e:
                logger.warning("client.sign_out_failed", user_id=user_id, error=e.message)
                raise
            self._profile = None
            logger.info("client.signed_out", user_id=user_id)
        self.navigate(LOGIN_PATH)

    # ─── Profile updates ──────────────────────────────────

    async def update_profile(
        self, changes: Optional[dict[str, Any]] = None, **kwargs
    ) -> Optional[ClientProfile]:
        """Merge top-level profile fields and stamp updatedAt. No-op when signed out."""
        if self._profile is None:
            return None
        async with self._busy():
            try:
                fields = _field_names(ClientProfile, {**(changes or {}), **kwargs})
                frozen = IMMUTABLE_PROFILE_FIELDS & fields.keys()
                if frozen:
                    raise ValidationError(
                        {f: ["Field cannot be changed"] for f in sorted(frozen)}
                    )
                fields["updated_at"] = self.clock()
                updated = _merge(self._profile, fields)
                self._save_profile(updated)
            except SubTrackerError as e:
                logger.warning("client.update_profile_failed", error=e.message)
                raise
            self._profile = updated
            return updated

    async def update_preferences(
        self, changes: Optional[dict[str, Any]] = None, **kwargs
    ) -> Optional[ClientProfile]:
        """Merge into preferences only; sibling fields stay as they were."""
        if self._profile is None:
            return None
        async with self._busy():
            try:
                fields = _field_names(Preferences, {**(changes or {}), **kwargs})
                preferences = _merge(self._profile.preferences, fields)
                updated = self._profile.model_copy(
                    update={"preferences": preferences, "updated_at": self.clock()}
                )
                self._save_profile(updated)
            except SubTrackerError as e:
                logger.warning("client.update_preferences_failed", error=e.message)
                raise
            self._profile = updated
            return updated

    # ─── Data buckets & sync ──────────────────────────────

    def read_bucket(self, name: str) -> Any:
        key = bucket_key(name, self._require_user())
        return self.store.read_json(key, copy.deepcopy(BUCKETS[name][1]))

    def write_bucket(self, name: str, data: Any) -> None:
        user_id = self._require_user()
        self.store.write_json(bucket_key(name, user_id), data)

    def last_synced_at(self) -> Optional[datetime]:
        if self._profile is None:
            return None
        raw = self.store.read_json(last_sync_key(self._profile.id))
        if raw is None:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"Corrupt last-sync timestamp: {e}", key=last_sync_key(self._profile.id)
            )

    async def sync_data(self) -> Optional[SyncResult]:
        """Gather every bucket, hand it to the sync target, record the sync time.

        Delivery is best-effort: target failures are logged and returned,
        never raised. Storage failures while gathering do raise.
        """
        if self._profile is None:
            return None
        async with self._busy():
            user_id = self._profile.id
            try:
                payload = SyncPayload(
                    user_id=user_id,
                    timestamp=self.clock(),
                    data={name: self.read_bucket(name) for name in BUCKETS},
                )
            except SubTrackerError as e:
                logger.warning("client.sync_failed", user_id=user_id, error=e.message)
                raise
            logger.info("client.sync_started", user_id=user_id)

            try:
                result = await self.sync_target.push(payload)
            except Exception as e:
                logger.warning("client.sync_delivery_failed", user_id=user_id, error=str(e))
                result = SyncResult(delivered=False, error=str(e))

            await self._network_delay()
            try:
                self.store.write_json(last_sync_key(user_id), payload.timestamp.isoformat())
            except SubTrackerError as e:
                logger.warning("client.sync_failed", user_id=user_id, error=e.message)
                raise
            logger.info(
                "client.sync_recorded",
                user_id=user_id,
                delivered=result.delivered,
            )
            return result

    # ─── Helpers ──────────────────────────────────────────

    def _require_user(self) -> str:
        if self._profile is None:
            raise Unauthenticated("No active session")
        return self._profile.id

    def _accounts(self) -> list[LocalAccount]:
        raw = self.store.read_json(ACCOUNTS_KEY, [])
        try:
            return [LocalAccount.model_validate(a) for a in raw]
        except (PydanticValidationError, TypeError) as e:
            raise PersistenceError(f"Corrupt accounts list: {e}", key=ACCOUNTS_KEY)

    def _find_account(self, email: str) -> Optional[LocalAccount]:
        wanted = normalize_email(email)
        return next((a for a in self._accounts() if a.email == wanted), None)

    def _new_user_id(self, accounts: list[LocalAccount], now: datetime) -> str:
        """user-<epoch ms>, bumped until it's unused in this store."""
        taken = {a.id for a in accounts}
        stamp = int(now.timestamp() * 1000)
        while f"user-{stamp}" in taken or profile_key(f"user-{stamp}") in self.store:
            stamp += 1
        return f"user-{stamp}"

    def _load_profile(self, user_id: str) -> Optional[ClientProfile]:
        raw = self.store.read_json(profile_key(user_id))
        if raw is None:
            return None
        try:
            return ClientProfile.model_validate(raw)
        except PydanticValidationError as e:
            raise PersistenceError(f"Corrupt profile for {user_id}: {e}", key=profile_key(user_id))

    def _save_profile(self, profile: ClientProfile) -> None:
        self.store.write_json(profile_key(profile.id), profile.to_json())

    def _write_pointer(self, user_id: str) -> None:
        self.store.write_json(SESSION_KEY, {"userId": user_id})
