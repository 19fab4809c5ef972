"""
NoteKeep Backend: Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment variables are set before anything from `notekeep` is
       imported, so the settings singleton picks up test values.

Fixture Hierarchy:
    Function-scoped (fresh for each test):
    ├── db_engine: in-memory SQLite engine with all tables created
    ├── db_session: AsyncSession bound to db_engine
    ├── store: CredentialStore over db_session (private lock registry)
    ├── notifier: RecordingNotifier capturing every code "sent"
    ├── clock: FakeClock, advanced explicitly by tests
    ├── mock_db_session: AsyncMock session for failure-path tests
    ├── app / test_client: fresh FastAPI app wired to db_engine + notifier
    └── signed_in: helper that signs a user up and returns auth headers
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Tuple
from unittest.mock import AsyncMock, MagicMock

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup (before any notekeep import)
# ══════════════════════════════════════════════════════════════════════════

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-not-for-production-use"
os.environ["SMTP_USERNAME"] = "noreply@notekeep.io"
os.environ["SMTP_PASSWORD"] = "not-a-real-password"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["AUTH_RATE_LIMIT_REQUESTS"] = "10000"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from notekeep.database import Base, get_db_session  # noqa: E402
from notekeep.models import note as _note_model  # noqa: E402,F401
from notekeep.models import user as _user_model  # noqa: E402,F401
from notekeep.services.credential_store import CredentialStore, KeyedLock  # noqa: E402
from notekeep.services.notifier import ChallengePurpose, Notifier  # noqa: E402
from notekeep.exceptions import DeliveryError  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════


class RecordingNotifier(Notifier):
    """
    Notifier that keeps every code instead of emailing it.

    Set `fail_with` to an exception to make the next sends raise it.
    """

    def __init__(self):
        self.sent: List[Tuple[str, str, ChallengePurpose]] = []
        self.fail_with = None

    async def send(self, to_email: str, code: str, purpose: ChallengePurpose) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_email, code, purpose))

    def last_code(self, email: str) -> str:
        for to_email, code, _ in reversed(self.sent):
            if to_email == email:
                return code
        raise AssertionError(f"no code was sent to {email}")


class FakeClock:
    """Callable clock for the OTP issuer/verifier; starts at a fixed instant."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def db_engine():
    """
    In-memory SQLite with the full schema.

    StaticPool keeps a single connection, so every session in the test sees
    the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    """CredentialStore with its own lock registry, isolated from other tests."""
    return CredentialStore(db_session, locks=KeyedLock())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    notifier = RecordingNotifier()
    notifier.fail_with = DeliveryError(context={"reason": "test"})
    return notifier


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_db_session():
    """
    Mock async database session for failure paths a real SQLite session
    cannot easily produce.

    Usage:
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception())
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# API Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def app(session_factory, notifier):
    """
    Fresh application wired to the in-memory database and the recording
    notifier. A new app per test also means fresh rate-limit counters.
    """
    from notekeep.dependencies import get_notifier
    from notekeep.main import create_app

    application = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = override_db_session
    application.dependency_overrides[get_notifier] = lambda: notifier
    return application


@pytest_asyncio.fixture
async def test_client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def signed_in(test_client, notifier):
    """
    Factory: sign up and verify an account over HTTP, return its auth headers.

    Usage:
        headers = await signed_in("alice@notekeep.io")
    """

    async def _sign_in(email: str = "alice@notekeep.io", name: str = "Alice", age: int = 30):
        response = await test_client.post(
            "/api/auth/signup", json={"email": email, "name": name, "age": age}
        )
        assert response.status_code == 201, response.text
        response = await test_client.post(
            "/api/auth/verify-otp",
            json={"email": email, "otp": notifier.last_code(email)},
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _sign_in
