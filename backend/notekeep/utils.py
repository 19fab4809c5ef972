"""
NoteKeep Backend: Shared Helpers
=================================
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Attach UTC to a naive datetime read back from the database.

    SQLite stores TIMESTAMP WITH TIME ZONE values without their offset;
    everything this application writes is UTC, so a naive value is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_email(email: str) -> str:
    """Canonical form used for every lookup and write (trimmed, lower-cased)."""
    return email.strip().lower()


def mask_email(email: str) -> str:
    """Log-safe form of an address: 'alice@example.com' -> 'a***@example.com'."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"
