"""
NoteKeep Backend: Note Request/Response Schemas
================================================

What:  API contract for the per-user notes endpoints.
How:   FastAPI validates request bodies against these models and builds
       responses from ORM objects (from_attributes).

Schemas are separate from the SQLAlchemy model so the API only exposes the
fields listed here.
"""

import uuid
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class NoteWrite(BaseModel):
    """
    Body of POST /api/notes and PUT /api/notes/{id}.

    Both fields are trimmed before the length checks, so a title of only
    whitespace is rejected.
    """
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=10000)

    @field_validator("title", "content", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if isinstance(v, str) else v


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """Full representation of a note."""
    id: uuid.UUID = Field(description="Unique note identifier (UUID)")
    title: str
    content: str
    created_at: datetime = Field(description="When the note was created (UTC ISO 8601)")
    updated_at: datetime = Field(description="When the note was last changed (UTC ISO 8601)")

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    """
    Page-number pagination state.

    total_pages is 0 when the user has no notes.
    """
    current_page: int
    total_pages: int
    total_notes: int
    has_next_page: bool
    has_prev_page: bool


class NoteListResponse(BaseModel):
    """Paginated response wrapper for GET /api/notes."""
    notes: List[NoteResponse] = Field(description="Notes on this page, newest first")
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str
