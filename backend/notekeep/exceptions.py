"""
NoteKeep Backend: Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for every failure the API can report.
How:   Each exception carries a user-safe message, a machine-readable
       `error_code` and an optional context dict. Global exception handlers
       (registered in main.py) turn them into JSON error responses with the
       exception's `status_code`.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    NoteKeepError (base)
    ├── ValidationError              → 400
    ├── NotFoundError                → 404
    ├── AuthError
    │   ├── DuplicateAccountError    → 409
    │   ├── AccountNotFoundError     → 404
    │   ├── NotVerifiedError         → 403
    │   │   └── UnverifiedSessionError → 401
    │   ├── AlreadyVerifiedError     → 400
    │   ├── InvalidOrExpiredCodeError→ 400
    │   ├── InvalidTokenError        → 401
    │   └── UserGoneError            → 401
    ├── DeliveryError                → 503
    ├── CircuitBreakerOpenError      → 503
    ├── StoreError                   → 500
    └── RateLimitExceededError       → 429

The `context` dict is logged server-side and never returned to the client
unless a handler copies specific keys out of it.
"""

from typing import Any, Dict, Optional


class NoteKeepError(Exception):
    """
    Base exception for all NoteKeep application errors.

    Attributes:
        message:     User-facing error description (safe to return in API response)
        context:     Additional debug info (logged but NOT returned to client)
        error_code:  Machine-readable kind, returned as "error" in responses
        status_code: HTTP status used by the global handlers
    """

    error_code = "server_error"
    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteKeepError):
    """
    Raised when client input fails a business rule.

    Schema-level problems are rejected by FastAPI with 422 before any
    service runs; this covers checks only a service can make.
    """

    error_code = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoteKeepError):
    """
    Raised when a requested resource does not exist.

    Also used for resources that exist but belong to another user, so that
    callers cannot discover other users' note ids.
    """

    error_code = "not_found"
    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


# ══════════════════════════════════════════════════════════════════════════
# Authentication errors
# ══════════════════════════════════════════════════════════════════════════


class AuthError(NoteKeepError):
    """
    Base for failures of the OTP / token flow.

    All of these are recoverable by the client re-prompting the user, so
    they share one handler that logs at WARNING and returns the class's
    status code.
    """

    error_code = "auth_error"
    status_code = 400
    default_message = "Authentication failed"

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message or self.default_message, context=context)


class DuplicateAccountError(AuthError):
    """Signup for an email that already has an account."""

    error_code = "duplicate_account"
    status_code = 409
    default_message = "An account with this email already exists. Please sign in instead."


class AccountNotFoundError(AuthError):
    """Login or resend for an email with no account."""

    error_code = "account_not_found"
    status_code = 404
    default_message = "No account found with this email. Please sign up first."


class NotVerifiedError(AuthError):
    """The account exists but its email has never been verified."""

    error_code = "not_verified"
    status_code = 403
    default_message = "Please verify your email first."


class UnverifiedSessionError(NotVerifiedError):
    """A bearer token for an account that never verified its email."""

    status_code = 401


class AlreadyVerifiedError(AuthError):
    """Resend requested for an account that has finished signup."""

    error_code = "already_verified"
    status_code = 400
    default_message = "This account is already verified. Please sign in instead."


class InvalidOrExpiredCodeError(AuthError):
    """
    The presented one-time code was rejected.

    Deliberately covers every cause (no account, no challenge, wrong code,
    expired code, attempts exhausted) with one message.
    """

    error_code = "invalid_or_expired_code"
    status_code = 400
    default_message = "Invalid or expired code."


class InvalidTokenError(AuthError):
    """Bearer token is missing, malformed, badly signed or expired."""

    error_code = "invalid_token"
    status_code = 401
    default_message = "Not authorized. Please sign in again."


class UserGoneError(AuthError):
    """Bearer token is valid but its user no longer exists."""

    error_code = "user_gone"
    status_code = 401
    default_message = "Token is valid but the user no longer exists."


# ══════════════════════════════════════════════════════════════════════════
# Infrastructure errors
# ══════════════════════════════════════════════════════════════════════════


class DeliveryError(NoteKeepError):
    """
    Raised when a one-time code could not be delivered.

    When:    SMTP refused the message, or transport errors persisted through
             all tenacity retries.
    HTTP:    503 Service Unavailable
    """

    error_code = "delivery_error"
    status_code = 503

    def __init__(
        self,
        message: str = "We could not send your code right now. Please try again shortly.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(NoteKeepError):
    """
    Raised when the mail circuit breaker is in OPEN state.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all sends for M seconds)
        → After M seconds → HALF-OPEN (allow one test send)
        → If test succeeds → CLOSED
        → If test fails → OPEN again
    """

    error_code = "delivery_unavailable"
    status_code = 503

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Email delivery is temporarily unavailable. "
            f"Please try again in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class StoreError(NoteKeepError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic. Detailed error
    info (SQL, constraint names) is logged server-side only.
    """

    error_code = "store_error"
    status_code = 500

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(NoteKeepError):
    """Raised when a client exceeds the per-IP request rate limit."""

    error_code = "rate_limit_exceeded"
    status_code = 429

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
