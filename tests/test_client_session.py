"""Client session manager tests.

Learn: Everything runs against a MemoryStore with zero simulated latency
and an injected clock, so timestamps and generated ids are predictable.
Tests cover:
1. Bootstrap: demo fallback, restore, self-healing of bad pointers
2. Sign up / sign in / sign out against the local accounts list
3. Profile and preference merges
4. Data buckets and sync
"""

import asyncio
import json
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from conftest import FakeClock
from subtracker.client.profile import (
    DEMO_EMAIL,
    DEMO_TIMEZONE,
    DEMO_USER_ID,
    add_one_year,
)
from subtracker.client.session import ClientSessionManager
from subtracker.client.store import (
    ACCOUNTS_KEY,
    BUCKETS,
    SESSION_KEY,
    MemoryStore,
    bucket_key,
    last_sync_key,
    profile_key,
)
from subtracker.client.sync import SyncResult, SyncTarget
from subtracker.errors import (
    DuplicateUser,
    InvalidCredentials,
    PersistenceError,
    Unauthenticated,
    ValidationError,
)

PASSWORD = "Valid1Password"


class FailingStore(MemoryStore):
    """MemoryStore that refuses writes to keys with a given prefix while armed."""

    def __init__(self, prefix: str):
        super().__init__()
        self.prefix = prefix
        self.armed = False

    def set_item(self, key, value):
        if self.armed and key.startswith(self.prefix):
            raise PersistenceError("disk full", key=key)
        super().set_item(key, value)

    def remove_item(self, key):
        if self.armed and key.startswith(self.prefix):
            raise PersistenceError("disk full", key=key)
        super().remove_item(key)


class RecordingTarget(SyncTarget):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.payloads = []

    async def push(self, payload):
        self.payloads.append(payload)
        if self.fail:
            raise ConnectionError("remote store unreachable")
        return SyncResult(delivered=True, status_code=200)


def _manager(store, clock, **kwargs):
    navigated = []
    kwargs.setdefault("navigate", navigated.append)
    mgr = ClientSessionManager(store, latency=0, clock=clock, **kwargs)
    mgr.navigated = navigated
    return mgr


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def mgr(store, clock):
    return _manager(store, clock)


async def _signed_up(mgr, email="ann@example.com", name="Ann Lee"):
    await mgr.bootstrap()
    return await mgr.sign_up(email, PASSWORD, name)


# ═══════════════════════════════════════════════════════════
# Bootstrap
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_bootstrap_empty_store_creates_demo_profile(mgr, store):
    profile = await mgr.bootstrap()

    assert profile.id == DEMO_USER_ID
    assert profile.email == DEMO_EMAIL
    assert profile.preferences.timezone == DEMO_TIMEZONE
    assert profile.subscription.plan == "free"
    assert profile.subscription.valid_until == add_one_year(profile.created_at)
    assert mgr.is_authenticated
    assert store.read_json(SESSION_KEY) == {"userId": DEMO_USER_ID}
    assert profile_key(DEMO_USER_ID) in store


@pytest.mark.asyncio
async def test_bootstrap_storage_failure_is_logged_and_raised(clock):
    store = FailingStore(prefix=SESSION_KEY)
    store.armed = True
    mgr = _manager(store, clock)

    with capture_logs() as logs:
        with pytest.raises(PersistenceError):
            await mgr.bootstrap()

    assert mgr.profile is None
    assert any(e["event"] == "client.bootstrap_failed" for e in logs)


@pytest.mark.asyncio
async def test_demo_profile_created_once(store, clock):
    first = await _manager(store, clock).bootstrap()
    store.remove_item(SESSION_KEY)
    second = await _manager(store, clock).bootstrap()

    assert second.created_at == first.created_at
    assert second == first


@pytest.mark.asyncio
async def test_bootstrap_restores_existing_session(mgr, store, clock):
    profile = await _signed_up(mgr)

    restored = await _manager(store, clock).bootstrap()
    assert restored == profile


@pytest.mark.asyncio
async def test_bootstrap_heals_dangling_pointer(store, clock):
    store.write_json(SESSION_KEY, {"userId": "user-that-was-removed"})

    profile = await _manager(store, clock).bootstrap()

    assert profile.id == DEMO_USER_ID
    assert store.read_json(SESSION_KEY) == {"userId": DEMO_USER_ID}


@pytest.mark.asyncio
async def test_bootstrap_heals_corrupt_pointer(store, clock):
    store.set_item(SESSION_KEY, "{not json")

    profile = await _manager(store, clock).bootstrap()

    assert profile.id == DEMO_USER_ID
    assert store.read_json(SESSION_KEY) == {"userId": DEMO_USER_ID}


@pytest.mark.asyncio
async def test_bootstrap_heals_corrupt_profile(store, clock):
    store.write_json(SESSION_KEY, {"userId": "user-1"})
    store.write_json(profile_key("user-1"), {"id": "user-1"})

    profile = await _manager(store, clock).bootstrap()
    assert profile.id == DEMO_USER_ID


# ═══════════════════════════════════════════════════════════
# Sign up
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sign_up_creates_and_activates_profile(mgr, store, monkeypatch):
    monkeypatch.setenv("TZ", "Europe/Berlin")
    profile = await _signed_up(mgr, email="  Ann@Example.com ")

    assert profile.id.startswith("user-")
    assert profile.email == "ann@example.com"
    assert profile.name == "Ann Lee"
    assert profile.preferences.timezone == "Europe/Berlin"
    assert profile.preferences.currency == "USD"
    assert profile.subscription.valid_until == add_one_year(profile.created_at)
    assert mgr.profile == profile
    assert store.read_json(SESSION_KEY) == {"userId": profile.id}

    accounts = store.read_json(ACCOUNTS_KEY)
    assert [a["email"] for a in accounts] == ["ann@example.com"]
    assert accounts[0]["passwordHash"] != PASSWORD


@pytest.mark.asyncio
async def test_sign_up_id_comes_from_clock(mgr, clock):
    await mgr.bootstrap()
    expected = f"user-{int(clock.now.timestamp() * 1000)}"
    profile = await mgr.sign_up("ann@example.com", PASSWORD, "Ann Lee")
    assert profile.id == expected


@pytest.mark.asyncio
async def test_sign_up_ids_unique_within_same_millisecond(store):
    mgr = _manager(store, FakeClock(step=timedelta(0)))
    await mgr.bootstrap()
    a = await mgr.sign_up("a@example.com", PASSWORD, "A")
    b = await mgr.sign_up("b@example.com", PASSWORD, "B")
    assert a.id != b.id


@pytest.mark.asyncio
async def test_sign_up_duplicate_email(mgr, store):
    await _signed_up(mgr)
    with pytest.raises(DuplicateUser):
        await mgr.sign_up("ANN@example.com", PASSWORD, "Someone Else")
    assert len(store.read_json(ACCOUNTS_KEY)) == 1


@pytest.mark.asyncio
async def test_sign_up_validation(mgr, store):
    await mgr.bootstrap()
    with pytest.raises(ValidationError) as exc:
        await mgr.sign_up("not-an-email", "alllowercase1", "")
    assert set(exc.value.fields) == {"email", "password", "name"}
    assert store.read_json(ACCOUNTS_KEY) is None
    assert mgr.profile.id == DEMO_USER_ID


@pytest.mark.asyncio
async def test_sign_up_profile_write_failure_leaves_no_account(clock):
    store = FailingStore(prefix="subtracker_user_user-")
    mgr = _manager(store, clock)
    await mgr.bootstrap()

    store.armed = True
    with pytest.raises(PersistenceError):
        await mgr.sign_up("ann@example.com", PASSWORD, "Ann Lee")
    assert store.read_json(ACCOUNTS_KEY, []) == []
    assert mgr.profile.id == DEMO_USER_ID

    store.armed = False
    profile = await mgr.sign_up("ann@example.com", PASSWORD, "Ann Lee")
    await mgr.sign_out()
    assert await mgr.sign_in("ann@example.com", PASSWORD) == profile


# ═══════════════════════════════════════════════════════════
# Sign in / out
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sign_out_keeps_profile_and_navigates(mgr, store):
    profile = await _signed_up(mgr)

    await mgr.sign_out()

    assert mgr.profile is None
    assert not mgr.is_authenticated
    assert SESSION_KEY not in store
    assert profile_key(profile.id) in store
    assert mgr.navigated == ["/login"]


@pytest.mark.asyncio
async def test_sign_in_after_sign_out(mgr, store):
    profile = await _signed_up(mgr)
    await mgr.sign_out()

    signed_in = await mgr.sign_in("ANN@example.com", PASSWORD)

    assert signed_in == profile
    assert store.read_json(SESSION_KEY) == {"userId": profile.id}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password",
    [
        ("ann@example.com", "Wrong1Password"),
        ("nobody@example.com", PASSWORD),
        (DEMO_EMAIL, PASSWORD),
    ],
)
async def test_sign_in_rejects_bad_credentials(mgr, store, email, password):
    await _signed_up(mgr)
    await mgr.sign_out()

    with pytest.raises(InvalidCredentials):
        await mgr.sign_in(email, password)
    assert mgr.profile is None
    assert SESSION_KEY not in store


@pytest.mark.asyncio
@pytest.mark.parametrize("email,password", [("ann@example.com", ""), ("not-an-email", PASSWORD)])
async def test_sign_in_malformed_input_is_invalid_credentials(mgr, store, email, password):
    await _signed_up(mgr)
    await mgr.sign_out()

    with pytest.raises(InvalidCredentials):
        await mgr.sign_in(email, password)
    assert SESSION_KEY not in store


@pytest.mark.asyncio
async def test_sign_out_storage_failure_is_logged_and_raised(clock):
    store = FailingStore(prefix=SESSION_KEY)
    mgr = _manager(store, clock)
    profile = await _signed_up(mgr)

    store.armed = True
    with capture_logs() as logs:
        with pytest.raises(PersistenceError):
            await mgr.sign_out()

    assert mgr.profile == profile
    assert mgr.navigated == []
    failed = [e for e in logs if e["event"] == "client.sign_out_failed"]
    assert failed and failed[0]["log_level"] == "warning"


@pytest.mark.asyncio
async def test_sign_in_with_corrupt_accounts_list(mgr, store):
    await mgr.bootstrap()
    store.set_item(ACCOUNTS_KEY, json.dumps({"not": "a list"}))
    with pytest.raises(PersistenceError):
        await mgr.sign_in("ann@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_is_loading_while_in_flight(store, clock):
    mgr = ClientSessionManager(store, latency=0.05, clock=clock, navigate=lambda p: None)
    await mgr.bootstrap()
    assert not mgr.is_loading

    task = asyncio.create_task(mgr.sign_up("ann@example.com", PASSWORD, "Ann Lee"))
    await asyncio.sleep(0)
    assert mgr.is_loading

    await task
    assert not mgr.is_loading


@pytest.mark.asyncio
async def test_is_loading_cleared_after_failure(mgr):
    await mgr.bootstrap()
    with pytest.raises(InvalidCredentials):
        await mgr.sign_in("nobody@example.com", PASSWORD)
    assert not mgr.is_loading


# ═══════════════════════════════════════════════════════════
# Profile & preferences
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_preferences_changes_only_named_field(mgr, store, clock):
    before = await _signed_up(mgr)

    after = await mgr.update_preferences({"darkMode": True})

    assert after.preferences.dark_mode is True
    assert after.preferences.model_dump(exclude={"dark_mode"}) == before.preferences.model_dump(
        exclude={"dark_mode"}
    )
    assert after.model_dump(exclude={"preferences", "updated_at"}) == before.model_dump(
        exclude={"preferences", "updated_at"}
    )
    assert after.updated_at > before.updated_at

    reloaded = await _manager(store, clock).bootstrap()
    assert reloaded.preferences.dark_mode is True


@pytest.mark.asyncio
async def test_update_preferences_merges_nested_notifications(mgr):
    await _signed_up(mgr)

    after = await mgr.update_preferences(notifications={"weeklyReports": True})

    assert after.preferences.notifications.weekly_reports is True
    assert after.preferences.notifications.alert_threshold == 80
    assert after.preferences.notifications.budget_alerts is True


@pytest.mark.asyncio
async def test_update_preferences_rejects_out_of_range(mgr, store):
    profile = await _signed_up(mgr)

    with pytest.raises(ValidationError):
        await mgr.update_preferences(fiscal_month_start_day=31)

    assert mgr.profile == profile
    assert store.read_json(profile_key(profile.id)) == profile.to_json()


@pytest.mark.asyncio
async def test_update_profile_merges_name(mgr):
    before = await _signed_up(mgr)

    after = await mgr.update_profile(name="Ann B. Lee")

    assert after.name == "Ann B. Lee"
    assert after.email == before.email
    assert after.created_at == before.created_at
    assert after.preferences == before.preferences
    assert after.updated_at > before.updated_at


@pytest.mark.asyncio
@pytest.mark.parametrize("changes", [{"id": "user-x"}, {"email": "x@example.com"}, {"createdAt": "2020-01-01T00:00:00Z"}])
async def test_update_profile_identity_fields_are_frozen(mgr, changes):
    before = await _signed_up(mgr)
    with pytest.raises(ValidationError):
        await mgr.update_profile(changes)
    assert mgr.profile == before


@pytest.mark.asyncio
async def test_update_profile_unknown_field(mgr):
    await _signed_up(mgr)
    with pytest.raises(ValidationError) as exc:
        await mgr.update_profile({"favouriteColour": "teal"})
    assert "favouriteColour" in exc.value.fields


@pytest.mark.asyncio
async def test_updates_are_noops_when_signed_out(mgr, store):
    await _signed_up(mgr)
    await mgr.sign_out()
    snapshot = dict((k, store.get_item(k)) for k in store.keys())

    assert await mgr.update_profile(name="Nobody") is None
    assert await mgr.update_preferences(dark_mode=True) is None
    assert dict((k, store.get_item(k)) for k in store.keys()) == snapshot


# ═══════════════════════════════════════════════════════════
# Buckets & sync
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sync_gathers_every_bucket(store, clock):
    target = RecordingTarget()
    mgr = _manager(store, clock, sync_target=target)
    profile = await _signed_up(mgr)
    mgr.write_bucket("transactions", [{"amount": 12.5, "payee": "Coffee"}])

    result = await mgr.sync_data()

    assert result.delivered is True
    payload = target.payloads[0]
    assert payload.user_id == profile.id
    assert set(payload.data) == set(BUCKETS)
    assert payload.data["transactions"] == [{"amount": 12.5, "payee": "Coffee"}]
    assert payload.data["subscriptions"] == {}
    assert payload.data["budgetPods"] == []
    assert mgr.last_synced_at() == payload.timestamp
    assert store.read_json(last_sync_key(profile.id)) == payload.timestamp.isoformat()


@pytest.mark.asyncio
async def test_sync_delivery_failure_is_not_raised(store, clock):
    mgr = _manager(store, clock, sync_target=RecordingTarget(fail=True))
    await _signed_up(mgr)

    result = await mgr.sync_data()

    assert result.delivered is False
    assert "unreachable" in result.error
    assert mgr.last_synced_at() is not None


@pytest.mark.asyncio
async def test_sync_signed_out_does_nothing(store, clock):
    target = RecordingTarget()
    mgr = _manager(store, clock, sync_target=target)
    await _signed_up(mgr)
    await mgr.sign_out()

    assert await mgr.sync_data() is None
    assert target.payloads == []


@pytest.mark.asyncio
async def test_sync_with_corrupt_bucket_raises(mgr, store):
    profile = await _signed_up(mgr)
    store.set_item(bucket_key("notebooks", profile.id), "[oops")

    with capture_logs() as logs:
        with pytest.raises(PersistenceError):
            await mgr.sync_data()
    assert mgr.last_synced_at() is None
    assert any(
        e["event"] == "client.sync_failed" and e["log_level"] == "warning" for e in logs
    )


@pytest.mark.asyncio
async def test_default_sync_target_records_without_delivering(mgr):
    await _signed_up(mgr)
    result = await mgr.sync_data()
    assert result.delivered is False
    assert mgr.last_synced_at() is not None


@pytest.mark.asyncio
async def test_buckets_require_a_session(mgr):
    await _signed_up(mgr)
    await mgr.sign_out()
    with pytest.raises(Unauthenticated):
        mgr.read_bucket("transactions")


@pytest.mark.asyncio
async def test_buckets_are_per_user(mgr):
    await _signed_up(mgr, email="a@example.com")
    mgr.write_bucket("investments", [{"ticker": "VTI"}])
    await mgr.sign_up("b@example.com", PASSWORD, "B")
    assert mgr.read_bucket("investments") == []
