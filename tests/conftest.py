"""Test fixtures — an isolated in-memory database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Settings are pinned through SUBTRACKER_* env vars *before* the app is
   imported (cheap bcrypt rounds, SQLite, an unreachable Redis so rate
   limiting is skipped).
2. Each test gets its own in-memory SQLite engine with the schema created
   from the ORM models, so there's no cross-test pollution and no server
   to run.
3. The app's get_db dependency is overridden to hand out that session.
"""

import os

os.environ.setdefault("SUBTRACKER_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SUBTRACKER_REDIS_URL", "redis://127.0.0.1:1/0")
os.environ.setdefault("SUBTRACKER_BCRYPT_ROUNDS", "4")
os.environ.setdefault("SUBTRACKER_JWT_SECRET", "test-secret-key-for-testing-only")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from subtracker.db.engine import get_db  # noqa: E402
from subtracker.db.models import Base  # noqa: E402
from subtracker.main import app  # noqa: E402

MOCK_USER_ID = "00000000-0000-0000-0000-000000000001"
MOCK_SESSION_ID = "00000000-0000-0000-0000-000000000002"


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session on a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def client(db_session):
    """HTTP client with get_db and auth overridden.

    Learn: get_current_user returns a fixed identity that has no user row
    and no session row behind it, so protected routes run without a
    register+login first.
    """
    from subtracker.auth.dependencies import CurrentIdentity, get_current_user

    async def override_get_db():
        yield db_session

    def override_get_current_user():
        return CurrentIdentity(
            user_id=MOCK_USER_ID,
            email="mock@example.com",
            session_id=MOCK_SESSION_ID,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(db_session):
    """HTTP client WITHOUT auth override — the real bearer-token pipeline runs."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class FakeClock:
    """Deterministic clock for the client session manager."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture()
def clock():
    return FakeClock()
