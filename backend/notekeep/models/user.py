"""
NoteKeep Backend: User and Challenge SQLAlchemy Models
=======================================================

What:  ORM models for the `users` and `otp_challenges` tables.
Who:   Used by CredentialStore for all reads and writes, and by Alembic.

Table Design:
    users            one row per account; email is the natural key
    otp_challenges   at most one pending one-time code per email

The challenge lives in its own table keyed by email instead of as nullable
columns on the user row. Issuing a code is an upsert of that row, verifying
deletes it, and the row can be locked on its own (SELECT ... FOR UPDATE)
without touching the account.
"""

import uuid
from datetime import datetime

from sqlalchemy import TIMESTAMP, Boolean, Integer, String, Uuid, false, text
from sqlalchemy.orm import Mapped, mapped_column

from notekeep.database import Base
from notekeep.utils import utcnow


class User(Base):
    """
    An account, identified by its email address.

    Lifecycle:
        1. Created by signup (is_verified = False) together with a challenge
        2. is_verified flips to True on the first successful code check
        3. Never reset; accounts are not deleted by this service
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Stored normalized (trimmed, lower-case); the unique index enforces one
    # account per address at the database level as well
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Account email, trimmed and lower-cased",
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    age: Mapped[int] = mapped_column(Integer, nullable=False)

    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        comment="Set once, on the first successful code verification",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, verified={self.is_verified})>"


class OTPChallenge(Base):
    """
    A pending one-time code for an email address.

    A row is meaningful only while expires_at is in the future. It is
    replaced on every issuance and deleted on successful verification or
    once `attempts` reaches the configured limit.
    """

    __tablename__ = "otp_challenges"

    email: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Normalized email the code was sent to",
    )

    code: Mapped[str] = mapped_column(String(6), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )

    # One of ChallengePurpose's values: signup, login, resend
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Failed verification attempts against this code",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<OTPChallenge(purpose='{self.purpose}', expires_at='{self.expires_at}')>"
