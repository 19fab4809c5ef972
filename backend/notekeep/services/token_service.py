"""
NoteKeep Backend: Session Token Codec
======================================

What:  Signs and verifies the bearer tokens handed out after a successful
       code verification.
How:   PyJWT, HMAC-signed (HS256 by default). Claims: sub (user id), iat,
       exp, jti. Nothing is stored server-side; a token is valid while its
       signature checks out and exp is in the future.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

import jwt

from notekeep.config import settings
from notekeep.exceptions import InvalidTokenError
from notekeep.utils import utcnow

logger = logging.getLogger(__name__)


class TokenService:
    """Bearer-token codec bound to one signing key."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.ttl_seconds = ttl_seconds or settings.token_ttl_seconds

    def sign(
        self,
        payload: Dict[str, Any],
        ttl: Union[int, timedelta],
        issued_at: Optional[datetime] = None,
    ) -> str:
        """Encode `payload` with iat/exp/jti claims added."""
        if isinstance(ttl, int):
            ttl = timedelta(seconds=ttl)
        now = issued_at or utcnow()
        claims = dict(payload)
        claims.update({
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        })
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Raises:
            InvalidTokenError: bad signature, malformed, missing claims or expired
        """
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise InvalidTokenError(context={"reason": "expired"})
        except jwt.PyJWTError as e:
            logger.info("Rejected invalid token: %s", type(e).__name__)
            raise InvalidTokenError(context={"reason": type(e).__name__})

    def issue(self, user_id: uuid.UUID, issued_at: Optional[datetime] = None) -> str:
        """Session token for `user_id`, valid for `ttl_seconds`."""
        return self.sign({"sub": str(user_id)}, self.ttl_seconds, issued_at=issued_at)


token_service = TokenService()
