"""
NoteKeep Backend: Credential Store
===================================

What:  Persistence for user accounts and the email → challenge map.
How:   Thin async wrapper over one AsyncSession. Every database failure is
       translated into StoreError; callers never see SQLAlchemy exceptions.
Who:   Used by the OTP issuer/verifier and by AuthService.authenticate.

Single writer per email:
    Issuing and verifying a code are read-modify-write sequences on the
    email's challenge. `locked(email)` serialises them inside this process
    with an asyncio.Lock. Across processes the account row is read FOR
    UPDATE (it exists for every login, resend and verify, unlike the
    challenge row), and the challenge itself is written with an upsert, so
    two writers racing to create the first challenge both succeed and the
    later commit wins. SQLite ignores FOR UPDATE and serialises writers on
    its own. Callers commit before leaving the block; anything still
    uncommitted when the block raises is rolled back.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notekeep.exceptions import DuplicateAccountError, StoreError
from notekeep.models.user import OTPChallenge, User
from notekeep.utils import mask_email, utcnow

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key, created on first use and dropped when the last
    holder or waiter releases it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry; every CredentialStore shares it
challenge_locks = KeyedLock()


class _StoreErrors:
    """Context manager translating SQLAlchemy errors into StoreError."""

    def __init__(self, operation: str):
        self.operation = operation

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and isinstance(exc, SQLAlchemyError):
            logger.error("Store operation '%s' failed: %s", self.operation, str(exc))
            raise StoreError(
                context={"operation": self.operation, "error_type": type(exc).__name__},
            ) from exc
        return False


class CredentialStore:
    """
    Account and challenge persistence for one request's session.

    Methods flush but never commit on their own; `commit()` is explicit so
    the OTP issuer can hold the transaction open until the code is sent.
    """

    def __init__(self, session: AsyncSession, locks: KeyedLock = challenge_locks):
        self.session = session
        self._locks = locks

    # ── Transaction control ───────────────────────────────────────────────

    @asynccontextmanager
    async def locked(self, email: str) -> AsyncIterator[None]:
        """Hold the per-email lock; roll back whatever is uncommitted on error."""
        async with self._locks.hold(email):
            try:
                yield
            except BaseException:
                await self.rollback()
                raise

    async def commit(self) -> None:
        with _StoreErrors("commit"):
            await self.session.commit()

    async def rollback(self) -> None:
        with _StoreErrors("rollback"):
            await self.session.rollback()

    # ── Users ─────────────────────────────────────────────────────────────

    async def find_by_email(self, email: str, for_update: bool = False) -> Optional[User]:
        with _StoreErrors("find_by_email"):
            query = select(User).where(User.email == email)
            if for_update:
                query = query.with_for_update()
            result = await self.session.execute(query)
            return result.scalar_one_or_none()

    async def find_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        with _StoreErrors("find_by_id"):
            return await self.session.get(User, user_id)

    async def create_user(self, email: str, name: str, age: int) -> User:
        """
        Insert an unverified account.

        Raises:
            DuplicateAccountError: the unique index on email rejected the row
                (another process created the account first)
        """
        user = User(email=email, name=name, age=age, is_verified=False)
        try:
            with _StoreErrors("create_user"):
                self.session.add(user)
                await self.session.flush()
        except StoreError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise DuplicateAccountError(context={"email": mask_email(email)}) from exc
            raise
        logger.debug("User record created: %s", user.id)
        return user

    async def save(self, record) -> None:
        with _StoreErrors("save"):
            self.session.add(record)
            await self.session.flush()

    # ── Challenges ────────────────────────────────────────────────────────

    async def get_challenge(self, email: str, for_update: bool = False) -> Optional[OTPChallenge]:
        with _StoreErrors("get_challenge"):
            query = select(OTPChallenge).where(OTPChallenge.email == email)
            if for_update:
                query = query.with_for_update()
            result = await self.session.execute(query)
            return result.scalar_one_or_none()

    async def put_challenge(
        self,
        email: str,
        code: str,
        expires_at: datetime,
        purpose: str,
    ) -> OTPChallenge:
        """
        Replace the email's challenge, or create the first one.

        A single INSERT ... ON CONFLICT (email) DO UPDATE, so a concurrent
        writer that created the row first turns this into an update instead
        of a unique-key violation.
        """
        values = {
            "email": email,
            "code": code,
            "expires_at": expires_at,
            "purpose": purpose,
            "attempts": 0,
            "created_at": utcnow(),
        }
        with _StoreErrors("put_challenge"):
            # Pending ORM changes to the row must reach the database first
            await self.session.flush()
            insert = self._dialect_insert()
            stmt = insert(OTPChallenge).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[OTPChallenge.email],
                set_={key: stmt.excluded[key] for key in values if key != "email"},
            ).returning(OTPChallenge)
            result = await self.session.execute(
                stmt, execution_options={"populate_existing": True}
            )
            return result.scalar_one()

    def _dialect_insert(self):
        """The INSERT construct with ON CONFLICT support for the bound database."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise StoreError(
            message="Unsupported database backend",
            context={"operation": "put_challenge", "dialect": dialect},
        )

    async def delete_challenge(self, email: str) -> None:
        with _StoreErrors("delete_challenge"):
            await self.session.execute(
                delete(OTPChallenge).where(OTPChallenge.email == email)
            )
