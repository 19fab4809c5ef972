"""
NoteKeep Backend: Auth Service Tests
=====================================

What:  The four boundary operations of AuthService end to end over a real
       in-memory store: begin_challenge, complete_challenge, authenticate,
       resend.
"""

import uuid
from datetime import timedelta

import pytest

from notekeep.exceptions import (
    InvalidOrExpiredCodeError,
    InvalidTokenError,
    NotVerifiedError,
    UserGoneError,
)
from notekeep.models.user import User
from notekeep.services.auth_service import AuthService
from notekeep.services.notifier import ChallengePurpose
from notekeep.services.token_service import TokenService
from notekeep.utils import utcnow


@pytest.fixture
def tokens():
    return TokenService(secret_key="auth-service-test-secret", algorithm="HS256", ttl_seconds=3600)


@pytest.fixture
def auth(store, notifier, tokens, clock):
    return AuthService(store=store, notifier=notifier, tokens=tokens, clock=clock)


async def _signed_up(auth, notifier, email="alice@notekeep.io"):
    await auth.begin_challenge(email, ChallengePurpose.SIGNUP, name="Alice", age=30)
    return notifier.last_code(email)


class TestCompleteChallenge:

    @pytest.mark.asyncio
    async def test_returns_token_for_verified_user(self, auth, notifier, tokens):
        code = await _signed_up(auth, notifier)

        token, user = await auth.complete_challenge("alice@notekeep.io", code)

        assert user.is_verified is True
        assert tokens.verify(token)["sub"] == str(user.id)

    @pytest.mark.asyncio
    async def test_token_authenticates_immediately(self, auth, notifier):
        code = await _signed_up(auth, notifier)
        token, user = await auth.complete_challenge("alice@notekeep.io", code)

        authenticated = await auth.authenticate(token)
        assert authenticated.id == user.id

    @pytest.mark.asyncio
    async def test_wrong_code_issues_no_token(self, auth, notifier):
        code = await _signed_up(auth, notifier)
        wrong = "100000" if code != "100000" else "100001"

        with pytest.raises(InvalidOrExpiredCodeError):
            await auth.complete_challenge("alice@notekeep.io", wrong)

    @pytest.mark.asyncio
    async def test_login_round_trip(self, auth, notifier):
        code = await _signed_up(auth, notifier)
        await auth.complete_challenge("alice@notekeep.io", code)

        await auth.begin_challenge("alice@notekeep.io", ChallengePurpose.LOGIN)
        token, user = await auth.complete_challenge(
            "alice@notekeep.io", notifier.last_code("alice@notekeep.io")
        )

        assert user.email == "alice@notekeep.io"
        assert (await auth.authenticate(token)).id == user.id


class TestResend:

    @pytest.mark.asyncio
    async def test_resend_sends_with_resend_purpose(self, auth, notifier):
        await _signed_up(auth, notifier)

        user = await auth.resend("alice@notekeep.io")

        assert user.email == "alice@notekeep.io"
        assert notifier.sent[-1][2] is ChallengePurpose.RESEND


class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, notifier, tokens):
        code = await _signed_up(auth, notifier)
        _, user = await auth.complete_challenge("alice@notekeep.io", code)
        token = tokens.issue(user.id, issued_at=utcnow() - timedelta(hours=2))

        with pytest.raises(InvalidTokenError):
            await auth.authenticate(token)

    @pytest.mark.asyncio
    async def test_garbage_token(self, auth):
        with pytest.raises(InvalidTokenError):
            await auth.authenticate("garbage")

    @pytest.mark.asyncio
    async def test_non_uuid_subject(self, auth, tokens):
        token = tokens.sign({"sub": "not-a-uuid"}, ttl=60)

        with pytest.raises(InvalidTokenError):
            await auth.authenticate(token)

    @pytest.mark.asyncio
    async def test_user_gone(self, auth, tokens):
        with pytest.raises(UserGoneError):
            await auth.authenticate(tokens.issue(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_unverified_user(self, auth, store, tokens):
        user = User(email="bob@notekeep.io", name="Bob", age=41, is_verified=False)
        await store.save(user)
        await store.commit()

        with pytest.raises(NotVerifiedError):
            await auth.authenticate(tokens.issue(user.id))
