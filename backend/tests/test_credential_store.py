"""
NoteKeep Backend: Credential Store Tests
=========================================

What:  CredentialStore persistence, error translation and the per-email
       KeyedLock.

What we test:
    ✅ One account per email (unique index → DuplicateAccountError)
    ✅ put_challenge upserts; delete_challenge removes
    ✅ SQLAlchemy failures surface as StoreError
    ✅ locked() serialises holders of the same email and rolls back on error
    ✅ Workers with separate lock registries can both issue the first code
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notekeep.database import Base
from notekeep.exceptions import DuplicateAccountError, StoreError
from notekeep.models.user import User
from notekeep.services.credential_store import CredentialStore, KeyedLock
from notekeep.services.notifier import ChallengePurpose, Notifier
from notekeep.services.otp_service import OTPIssuer, OTPVerifier
from notekeep.utils import utcnow


class TestUsers:

    @pytest.mark.asyncio
    async def test_create_and_find(self, store):
        user = await store.create_user(email="alice@notekeep.io", name="Alice", age=30)
        await store.commit()

        assert user.is_verified is False
        assert (await store.find_by_email("alice@notekeep.io")).id == user.id
        assert (await store.find_by_id(user.id)).email == "alice@notekeep.io"

    @pytest.mark.asyncio
    async def test_unknown_email(self, store):
        assert await store.find_by_email("ghost@notekeep.io") is None

    @pytest.mark.asyncio
    async def test_unique_email_enforced_by_database(self, session_factory):
        async with session_factory() as first, session_factory() as second:
            await CredentialStore(first).create_user(email="alice@notekeep.io", name="Alice", age=30)
            await first.commit()

            with pytest.raises(DuplicateAccountError):
                await CredentialStore(second).create_user(
                    email="alice@notekeep.io", name="Impostor", age=30
                )


class TestChallenges:

    @pytest.mark.asyncio
    async def test_put_get_delete(self, store):
        expires = utcnow() + timedelta(minutes=10)
        await store.put_challenge("alice@notekeep.io", "123456", expires, "signup")
        await store.commit()

        challenge = await store.get_challenge("alice@notekeep.io")
        assert challenge.code == "123456"
        assert challenge.purpose == "signup"

        await store.delete_challenge("alice@notekeep.io")
        await store.commit()
        assert await store.get_challenge("alice@notekeep.io") is None

    @pytest.mark.asyncio
    async def test_put_replaces_existing(self, store):
        expires = utcnow() + timedelta(minutes=10)
        first = await store.put_challenge("alice@notekeep.io", "111111", expires, "signup")
        first.attempts = 3
        await store.save(first)

        second = await store.put_challenge("alice@notekeep.io", "222222", expires, "resend")
        await store.commit()

        assert second.code == "222222"
        assert second.purpose == "resend"
        assert second.attempts == 0

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store):
        await store.delete_challenge("ghost@notekeep.io")


class TestErrorTranslation:

    @pytest.mark.asyncio
    async def test_query_failure_becomes_store_error(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        store = CredentialStore(mock_db_session, locks=KeyedLock())

        with pytest.raises(StoreError) as exc_info:
            await store.find_by_email("alice@notekeep.io")
        assert exc_info.value.context["operation"] == "find_by_email"
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_commit_failure_becomes_store_error(self, mock_db_session):
        mock_db_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("db down"))
        store = CredentialStore(mock_db_session, locks=KeyedLock())

        with pytest.raises(StoreError):
            await store.commit()

    @pytest.mark.asyncio
    async def test_locked_rolls_back_on_error(self, mock_db_session):
        store = CredentialStore(mock_db_session, locks=KeyedLock())

        with pytest.raises(RuntimeError):
            async with store.locked("alice@notekeep.io"):
                raise RuntimeError("boom")

        mock_db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_locked_does_not_roll_back_on_success(self, mock_db_session):
        store = CredentialStore(mock_db_session, locks=KeyedLock())

        async with store.locked("alice@notekeep.io"):
            pass

        mock_db_session.rollback.assert_not_awaited()


class TestKeyedLock:

    @pytest.mark.asyncio
    async def test_same_key_is_serialised(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("alice@notekeep.io"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("alice@notekeep.io"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        async with locks.hold("bob@notekeep.io"):
            assert len(locks) == 2

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_registry_is_emptied_after_release(self):
        locks = KeyedLock()

        async with locks.hold("alice@notekeep.io"):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_registry_is_emptied_after_error(self):
        locks = KeyedLock()

        with pytest.raises(ValueError):
            async with locks.hold("alice@notekeep.io"):
                raise ValueError("boom")

        assert len(locks) == 0


class _SlowNotifier(Notifier):
    """Holds the issuer's transaction open while 'sending'."""

    def __init__(self, delay: float):
        self.delay = delay
        self.codes = []

    async def send(self, to_email, code, purpose):
        await asyncio.sleep(self.delay)
        self.codes.append(code)


class TestSeparateWorkers:
    """Two stores with their own lock registries stand in for two processes."""

    @pytest_asyncio.fixture
    async def file_engine(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'workers.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_first_login_codes_both_succeed(self, file_engine):
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            session.add(User(email="a@b.com", name="A", age=30, is_verified=True))
            await session.commit()

        notifier = _SlowNotifier(delay=0.3)
        async with factory() as first, factory() as second:
            results = await asyncio.gather(
                OTPIssuer(CredentialStore(first, locks=KeyedLock()), notifier)
                .issue("a@b.com", ChallengePurpose.LOGIN),
                OTPIssuer(CredentialStore(second, locks=KeyedLock()), notifier)
                .issue("a@b.com", ChallengePurpose.LOGIN),
                return_exceptions=True,
            )

        assert all(isinstance(result, User) for result in results), results
        assert len(notifier.codes) == 2

        async with factory() as session:
            store = CredentialStore(session, locks=KeyedLock())
            challenge = await store.get_challenge("a@b.com")
            assert challenge.code in notifier.codes
            assert challenge.attempts == 0

            user = await OTPVerifier(store).verify("a@b.com", challenge.code)
            assert user.email == "a@b.com"
