"""
NoteKeep Backend: SMTP Email Notifier
======================================

What:  Notifier implementation that emails one-time codes over SMTP.
How:   Builds a plain-text + HTML message from a per-purpose template and
       hands it to smtplib in a worker thread, with tenacity retries for
       transport errors and a circuit breaker around the whole send.
Who:   Singleton `email_notifier`, injected into AuthService by
       notekeep.dependencies.get_notifier.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter, only for transport
       errors (connection refused, dropped connection, timeout)
    2. Permanent SMTP errors (bad credentials, refused recipient) fail at once
    3. Circuit breaker fails fast while the mail server keeps failing
"""

import asyncio
import logging
import smtplib
import ssl
import time
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional, Tuple

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
    retry_if_exception_type,
    before_sleep_log,
)

from notekeep.config import settings
from notekeep.exceptions import CircuitBreakerOpenError, DeliveryError
from notekeep.services.notifier import ChallengePurpose, Notifier
from notekeep.utils import mask_email

logger = logging.getLogger(__name__)

# Errors worth another attempt; anything else from smtplib is permanent
TRANSIENT_SMTP_ERRORS = (
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
    ConnectionError,
    TimeoutError,
)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern around the mail server.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all sends)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow the next send through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not shared between worker processes; each worker trips on its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if a send may proceed.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.monotonic() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Mail circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(int(self.recovery_timeout - elapsed), 1)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Mail circuit breaker transitioning to CLOSED (server recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        """Record a failed send. May trigger CLOSED → OPEN."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("Mail circuit breaker returning to OPEN (test send failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Mail circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Email Notifier
# ══════════════════════════════════════════════════════════════════════════

class EmailNotifier(Notifier):
    """
    Sends one-time codes as email.

    Error Handling Chain:
        send fails with a transport error → tenacity retries
        → retries exhausted or permanent SMTP error → circuit breaker failure,
          DeliveryError raised
        → threshold reached → later sends rejected with CircuitBreakerOpenError
    """

    # purpose → (subject, headline)
    TEMPLATES: Dict[ChallengePurpose, Tuple[str, str]] = {
        ChallengePurpose.SIGNUP: (
            "Verify your NoteKeep account",
            "Welcome to NoteKeep! Use this code to verify your email address:",
        ),
        ChallengePurpose.LOGIN: (
            "Your NoteKeep sign-in code",
            "Use this code to sign in to NoteKeep:",
        ),
        ChallengePurpose.RESEND: (
            "Your new NoteKeep verification code",
            "Here is your new verification code:",
        ),
    }

    def __init__(self):
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info(
            "EmailNotifier initialized with host=%s:%d ssl=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_use_ssl,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    def build_message(self, to_email: str, code: str, purpose: ChallengePurpose) -> MIMEMultipart:
        """Render the template for `purpose` into a multipart/alternative message."""
        subject, headline = self.TEMPLATES[purpose]
        minutes = settings.otp_ttl_seconds // 60

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = settings.sender_address
        message["To"] = to_email

        text_body = (
            f"{headline}\n\n"
            f"    {code}\n\n"
            f"The code expires in {minutes} minutes. "
            f"If you did not request it, you can ignore this email.\n"
        )
        html_body = (
            "<html><body style=\"font-family: sans-serif;\">"
            f"<p>{headline}</p>"
            f"<p style=\"font-size: 28px; letter-spacing: 6px;\"><strong>{code}</strong></p>"
            f"<p>The code expires in {minutes} minutes. "
            "If you did not request it, you can ignore this email.</p>"
            "</body></html>"
        )
        message.attach(MIMEText(text_body, "plain"))
        message.attach(MIMEText(html_body, "html"))
        return message

    async def send(self, to_email: str, code: str, purpose: ChallengePurpose) -> None:
        """
        Email `code` to `to_email`.

        Raises:
            CircuitBreakerOpenError: too many recent delivery failures
            DeliveryError: the message could not be delivered
        """
        send_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        message = self.build_message(to_email, code, purpose)
        logger.info("[%s] Sending %s code to %s", send_id, purpose.value, mask_email(to_email))

        try:
            await self._send_with_retry(message, send_id)
        except (smtplib.SMTPException, OSError) as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Delivery to %s failed: %s",
                send_id,
                mask_email(to_email),
                type(e).__name__,
            )
            raise DeliveryError(
                retry_after=settings.cb_recovery_timeout,
                context={"send_id": send_id, "error_type": type(e).__name__},
            ) from e

        self.circuit_breaker.record_success()

    @retry(
        retry=retry_if_exception_type(TRANSIENT_SMTP_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            multiplier=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_with_retry(self, message: MIMEMultipart, send_id: str) -> None:
        """One delivery attempt; smtplib blocks, so it runs in a worker thread."""
        start_time = time.perf_counter()
        await asyncio.to_thread(self._deliver, message)
        logger.info(
            "[%s] Delivered in %.0fms",
            send_id,
            (time.perf_counter() - start_time) * 1000,
        )

    def _deliver(self, message: MIMEMultipart) -> None:
        """Open an SMTP session, authenticate if configured, and send."""
        if settings.smtp_use_ssl:
            server = smtplib.SMTP_SSL(
                settings.smtp_host,
                settings.smtp_port,
                timeout=settings.smtp_timeout,
                context=ssl.create_default_context(),
            )
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout)

        with server:
            if not settings.smtp_use_ssl:
                server.starttls(context=ssl.create_default_context())
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)


# ── Singleton Instance ────────────────────────────────────────────────────
# Holds the circuit breaker state, which must be shared across requests
email_notifier = EmailNotifier()
