"""
NoteKeep Backend: One-Time Code Issuer and Verifier
====================================================

What:  Issues 6-digit codes against an email and checks presented codes.
How:   Both sides run inside CredentialStore.locked(email), so issuing and
       verifying for one address never interleave.
Who:   Composed by AuthService; not used by routes directly.

Issuance Flow:
    ┌──────────────┐    ┌─────────────┐    ┌────────────┐    ┌──────────┐
    │ Preconditions│───▶│ Write code  │───▶│  Notifier  │───▶│  Commit  │
    │ (by purpose) │    │  (flush)    │    │   send()   │    │          │
    └──────────────┘    └─────────────┘    └────────────┘    └──────────┘

    A notifier failure raises before the commit, so the new code (and, for
    signup, the new account) is rolled back and the previous challenge, if
    any, stays in force.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from notekeep.config import settings
from notekeep.exceptions import (
    AccountNotFoundError,
    AlreadyVerifiedError,
    DuplicateAccountError,
    InvalidOrExpiredCodeError,
    NotVerifiedError,
    ValidationError,
)
from notekeep.models.user import User
from notekeep.services.credential_store import CredentialStore
from notekeep.services.notifier import ChallengePurpose, Notifier
from notekeep.utils import as_utc, mask_email, normalize_email, utcnow

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Uniform 6-digit code in [100000, 999999] from the OS CSPRNG."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def normalize_candidate(candidate: Union[str, int, None]) -> Optional[str]:
    """
    Canonical string form of a presented code, or None if it cannot match.

    Accepts the int a JSON client may send as well as the string form.
    """
    if candidate is None or isinstance(candidate, bool):
        return None
    if isinstance(candidate, int):
        candidate = str(candidate)
    candidate = candidate.strip()
    if len(candidate) != 6 or not candidate.isascii() or not candidate.isdigit():
        return None
    return candidate


class OTPIssuer:
    """
    Generates a code for an email and sends it.

    Preconditions by purpose:
        signup  no account may exist; one is created (unverified)
        login   account must exist and be verified
        resend  account must exist and still be unverified
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.ttl_seconds = ttl_seconds or settings.otp_ttl_seconds
        self._clock = clock

    async def issue(
        self,
        email: str,
        purpose: ChallengePurpose,
        name: Optional[str] = None,
        age: Optional[int] = None,
    ) -> User:
        """
        Issue a fresh code for `email` and deliver it.

        Args:
            email: Address to challenge (normalized here)
            purpose: Selects preconditions and the message template
            name, age: Required for signup, ignored otherwise

        Returns:
            The account the code was issued for.

        Raises:
            ValidationError: signup without name/age
            DuplicateAccountError, AccountNotFoundError, NotVerifiedError,
            AlreadyVerifiedError: preconditions (nothing is written)
            DeliveryError, CircuitBreakerOpenError: send failed (rolled back)
            StoreError: database failure (rolled back)
        """
        email = normalize_email(email)
        if purpose is ChallengePurpose.SIGNUP and (name is None or age is None):
            raise ValidationError(message="Name and age are required to sign up", field="name")

        async with self.store.locked(email):
            user = await self.store.find_by_email(email, for_update=True)

            if purpose is ChallengePurpose.SIGNUP:
                if user is not None:
                    raise DuplicateAccountError(context={"email": mask_email(email)})
                user = await self.store.create_user(email=email, name=name, age=age)
            else:
                if user is None:
                    raise AccountNotFoundError(context={"email": mask_email(email)})
                if purpose is ChallengePurpose.LOGIN and not user.is_verified:
                    raise NotVerifiedError(context={"email": mask_email(email)})
                if purpose is ChallengePurpose.RESEND and user.is_verified:
                    raise AlreadyVerifiedError(context={"email": mask_email(email)})

            code = generate_code()
            expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
            await self.store.put_challenge(email, code, expires_at, purpose.value)

            await self.notifier.send(email, code, purpose)
            await self.store.commit()

        logger.info(
            "Issued %s code for %s (expires %s)",
            purpose.value,
            mask_email(email),
            expires_at.isoformat(),
        )
        return user


class OTPVerifier:
    """
    Checks a presented code against the stored challenge.

    Accepts iff the account exists, a challenge exists, the codes match and
    the challenge has not expired. Every rejection is the same
    InvalidOrExpiredCodeError.

    Each wrong guess against a live challenge is counted; at `max_attempts`
    the challenge is deleted and a new code must be requested.
    """

    def __init__(
        self,
        store: CredentialStore,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.max_attempts = max_attempts or settings.otp_max_attempts
        self._clock = clock

    async def verify(self, email: str, candidate: Union[str, int, None]) -> User:
        """
        Consume the challenge for `email` if `candidate` matches it.

        On success the challenge is deleted and the account is marked
        verified (first success only).

        Raises:
            InvalidOrExpiredCodeError: any rejection
            StoreError: database failure
        """
        email = normalize_email(email)
        presented = normalize_candidate(candidate)

        async with self.store.locked(email):
            user = await self.store.find_by_email(email, for_update=True)
            challenge = await self.store.get_challenge(email, for_update=True)

            if user is None or challenge is None:
                logger.info("Code rejected for %s: no active challenge", mask_email(email))
                raise InvalidOrExpiredCodeError()

            if as_utc(challenge.expires_at) <= self._clock():
                await self.store.delete_challenge(email)
                await self.store.commit()
                logger.info("Code rejected for %s: expired", mask_email(email))
                raise InvalidOrExpiredCodeError()

            if presented is None or not hmac.compare_digest(challenge.code, presented):
                challenge.attempts += 1
                if challenge.attempts >= self.max_attempts:
                    await self.store.delete_challenge(email)
                    logger.warning(
                        "Challenge for %s burned after %d failed attempts",
                        mask_email(email),
                        challenge.attempts,
                    )
                else:
                    await self.store.save(challenge)
                    logger.info(
                        "Code rejected for %s: mismatch (%d/%d)",
                        mask_email(email),
                        challenge.attempts,
                        self.max_attempts,
                    )
                await self.store.commit()
                raise InvalidOrExpiredCodeError()

            await self.store.delete_challenge(email)
            if not user.is_verified:
                user.is_verified = True
                await self.store.save(user)
                logger.info("Account %s verified", user.id)
            await self.store.commit()

        return user
