"""
NoteKeep Backend: Application Package
======================================

A notes API whose users sign up and sign in with a one-time code sent to
their email address, then use a bearer token for the notes endpoints.

Layers:
    ┌─────────────────────────────────────┐
    │  Routes + dependencies (HTTP, gate) │  ← status codes, headers, Depends()
    ├─────────────────────────────────────┤
    │  Services                           │  ← OTP issue/verify, tokens, notes
    ├─────────────────────────────────────┤
    │  Models & Schemas                   │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │  Database                           │  ← async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
