"""
NoteKeep Backend: FastAPI Dependencies
=======================================

What:  Per-request wiring of services, and the gate in front of protected
       routes.
Who:   Declared with Depends() in the route modules; tests replace
       get_notifier / get_db_session through app.dependency_overrides.

Route gate:
    Unauthenticated ──(Bearer token passes AuthService.authenticate)──▶ Authenticated

    get_current_user either returns the live, verified User or raises; a
    raised error short-circuits the request with 401 before the handler runs.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from notekeep.database import get_db_session
from notekeep.exceptions import InvalidTokenError, NotVerifiedError, UnverifiedSessionError
from notekeep.models.user import User
from notekeep.services.auth_service import AuthService
from notekeep.services.credential_store import CredentialStore
from notekeep.services.email_service import email_notifier
from notekeep.services.notifier import Notifier

# auto_error=False: a missing/non-Bearer header becomes our own 401 envelope
# instead of FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False, description="Session token from a verify endpoint")


def get_notifier() -> Notifier:
    return email_notifier


def get_auth_service(
    db: AsyncSession = Depends(get_db_session),
    notifier: Notifier = Depends(get_notifier),
) -> AuthService:
    return AuthService(store=CredentialStore(db), notifier=notifier)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> User:
    """
    Resolve the request's bearer token to a verified user.

    Raises:
        InvalidTokenError: no token, or it failed signature/expiry checks
        UserGoneError: the token's user no longer exists
        UnverifiedSessionError: the user never verified their email
    """
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError(message="Not authorized, no token provided.")

    try:
        return await auth.authenticate(credentials.credentials)
    except NotVerifiedError as exc:
        raise UnverifiedSessionError(message=exc.message, context=exc.context) from exc
