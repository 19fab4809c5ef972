"""
NoteKeep Backend: Authentication Service
=========================================

What:  The four operations the HTTP layer uses for authentication:
       begin_challenge, complete_challenge, authenticate, resend.
How:   Composes the credential store, OTP issuer/verifier, notifier and
       token codec. Constructed per request (it holds the request's store).
Who:   Built by notekeep.dependencies.get_auth_service.

Flow:
    begin_challenge ──▶ code stored + emailed
    complete_challenge ──▶ code consumed ──▶ bearer token
    authenticate(token) ──▶ live, verified User (used by the route gate)
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Tuple

from notekeep.exceptions import InvalidTokenError, NotVerifiedError, UserGoneError
from notekeep.models.user import User
from notekeep.services.credential_store import CredentialStore
from notekeep.services.notifier import ChallengePurpose, Notifier
from notekeep.services.otp_service import OTPIssuer, OTPVerifier
from notekeep.services.token_service import TokenService, token_service
from notekeep.utils import utcnow

logger = logging.getLogger(__name__)


class AuthService:
    """Email-OTP authentication for one request."""

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        tokens: TokenService = token_service,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tokens = tokens
        self.issuer = OTPIssuer(store, notifier, clock=clock)
        self.verifier = OTPVerifier(store, clock=clock)

    async def begin_challenge(
        self,
        email: str,
        purpose: ChallengePurpose,
        name: Optional[str] = None,
        age: Optional[int] = None,
    ) -> User:
        """Issue and send a code; see OTPIssuer.issue for the error cases."""
        return await self.issuer.issue(email, purpose, name=name, age=age)

    async def complete_challenge(self, email: str, code) -> Tuple[str, User]:
        """
        Verify `code` for `email` and mint a session token.

        Returns:
            (token, user); the user is verified by the time this returns.

        Raises:
            InvalidOrExpiredCodeError: the code was rejected for any reason
        """
        user = await self.verifier.verify(email, code)
        token = self.tokens.issue(user.id)
        logger.info("Session token issued for user %s", user.id)
        return token, user

    async def resend(self, email: str) -> User:
        """Replace a pending signup code with a fresh one."""
        return await self.issuer.issue(email, ChallengePurpose.RESEND)

    async def authenticate(self, token: str) -> User:
        """
        Resolve a bearer token to its user.

        Raises:
            InvalidTokenError: signature, expiry or subject check failed
            UserGoneError: the token's user no longer exists
            NotVerifiedError: the user has not verified their email
        """
        payload = self.tokens.verify(token)
        try:
            user_id = uuid.UUID(str(payload["sub"]))
        except (KeyError, ValueError):
            raise InvalidTokenError(context={"reason": "bad_subject"})

        user = await self.store.find_by_id(user_id)
        if user is None:
            raise UserGoneError(context={"user_id": str(user_id)})
        if not user.is_verified:
            raise NotVerifiedError(
                message="Please verify your email before accessing this resource.",
                context={"user_id": str(user_id)},
            )
        return user
