"""
NoteKeep Backend: Note Service
===============================

What:  Per-user note CRUD with page-number pagination.
How:   Every query is filtered by the owner's id, so a note belonging to
       someone else behaves exactly like a missing one.
Who:   Called by the notes route handlers, after the route gate resolved
       the current user.

Error Handling Strategy:
    NotFoundError is raised for missing/foreign notes and propagates as-is.
    Any other failure is logged and wrapped in StoreError (generic message,
    details stay server-side).
"""

import logging
import math
import uuid

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from notekeep.exceptions import NotFoundError, NoteKeepError, StoreError
from notekeep.models.note import Note
from notekeep.schemas.note import (
    NoteListResponse,
    NoteResponse,
    Pagination,
)

logger = logging.getLogger(__name__)


class NoteService:
    """
    Business logic layer for note operations.

    Stateless: the session and the owner id arrive with every call.
    """

    async def _get_owned(self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID) -> Note:
        result = await db.execute(
            select(Note).where(Note.id == note_id, Note.user_id == user_id)
        )
        note = result.scalar_one_or_none()
        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note

    async def list_notes(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        page: int = 1,
        limit: int = 10,
    ) -> NoteListResponse:
        """
        One page of the user's notes, newest first.

        Query plan:
            SELECT ... WHERE user_id = :uid ORDER BY created_at DESC
            LIMIT :limit OFFSET (:page - 1) * :limit
            → served by idx_notes_user_created_at

        A page past the end returns an empty list with correct totals.
        """
        try:
            query = (
                select(Note)
                .where(Note.user_id == user_id)
                .order_by(desc(Note.created_at), desc(Note.id))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            result = await db.execute(query)
            notes = list(result.scalars().all())

            count_result = await db.execute(
                select(func.count(Note.id)).where(Note.user_id == user_id)
            )
            total = count_result.scalar() or 0
        except Exception as e:
            logger.error("Database error listing notes for %s: %s", user_id, str(e), exc_info=True)
            raise StoreError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            )

        total_pages = math.ceil(total / limit) if total else 0
        return NoteListResponse(
            notes=[NoteResponse.model_validate(note) for note in notes],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_notes=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )

    async def create_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        title: str,
        content: str,
    ) -> NoteResponse:
        try:
            note = Note(title=title, content=content, user_id=user_id)
            db.add(note)
            await db.flush()
        except Exception as e:
            logger.error("Database error creating note: %s", str(e), exc_info=True)
            raise StoreError(
                message="Could not save the note. Please try again.",
                context={"error_type": type(e).__name__},
            )
        logger.info("Note %s created for user %s", note.id, user_id)
        return NoteResponse.model_validate(note)

    async def get_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
    ) -> NoteResponse:
        """
        Raises:
            NotFoundError: no such note for this user (→ 404)
            StoreError: query execution failed (→ 500)
        """
        try:
            note = await self._get_owned(db, user_id, note_id)
        except NoteKeepError:
            raise
        except Exception as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise StoreError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        return NoteResponse.model_validate(note)

    async def update_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        title: str,
        content: str,
    ) -> NoteResponse:
        try:
            note = await self._get_owned(db, user_id, note_id)
            note.title = title
            note.content = content
            await db.flush()
        except NoteKeepError:
            raise
        except Exception as e:
            logger.error("Database error updating note %s: %s", note_id, str(e))
            raise StoreError(
                message="Could not update the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        return NoteResponse.model_validate(note)

    async def delete_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
    ) -> None:
        try:
            note = await self._get_owned(db, user_id, note_id)
            await db.delete(note)
            await db.flush()
        except NoteKeepError:
            raise
        except Exception as e:
            logger.error("Database error deleting note %s: %s", note_id, str(e))
            raise StoreError(
                message="Could not delete the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        logger.info("Note %s deleted by user %s", note_id, user_id)


# ── Singleton Instance ────────────────────────────────────────────────────
note_service = NoteService()
