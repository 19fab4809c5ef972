"""
NoteKeep Backend: Abstract Notifier Interface
==============================================

What:  Contract for delivering one-time codes out-of-band.
How:   Concrete implementations inherit from Notifier and implement send().
Who:   Called by the OTP issuer while the challenge transaction is open.

Implementations:
    - EmailNotifier (email_service.py): SMTP with retry and circuit breaker
    - Tests use a recording fake (tests/conftest.py)
"""

from abc import ABC, abstractmethod
from enum import Enum


class ChallengePurpose(str, Enum):
    """
    Why a code is being issued.

    Decides the issuer's preconditions and the notifier's message template;
    nothing else branches on it.
    """

    SIGNUP = "signup"
    LOGIN = "login"
    RESEND = "resend"


class Notifier(ABC):
    """
    Delivers a one-time code to an email address.

    Contract:
        - send() returns only once the message has been handed to the transport
        - every failure is raised as DeliveryError (or CircuitBreakerOpenError
          when the implementation is refusing work), never a transport exception
        - the code must not appear in logs
    """

    @abstractmethod
    async def send(self, to_email: str, code: str, purpose: ChallengePurpose) -> None:
        """
        Deliver `code` to `to_email` using the template for `purpose`.

        Raises:
            DeliveryError: the message could not be delivered
            CircuitBreakerOpenError: delivery is currently suspended
        """
        ...
