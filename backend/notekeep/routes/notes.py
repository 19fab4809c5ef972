"""
NoteKeep Backend: Notes Route Handlers
=======================================

What:  CRUD for the signed-in user's notes under /api/notes.
How:   Every handler depends on get_current_user, so no handler runs without
       a verified user; the user id is passed down to NoteService, which
       scopes every query to it.

Caching:
    Responses carry `Cache-Control: private, no-store`; notes are
    user-specific and mutable.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from notekeep.database import get_db_session
from notekeep.dependencies import get_current_user
from notekeep.models.user import User
from notekeep.schemas.common import ErrorResponse
from notekeep.schemas.note import (
    MessageResponse,
    NoteListResponse,
    NoteResponse,
    NoteWrite,
)
from notekeep.services.note_service import note_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/notes",
    tags=["Notes"],
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
)

_NOT_FOUND = {404: {"description": "Note not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=NoteListResponse,
    summary="List the user's notes, newest first",
)
async def list_notes(
    response: Response,
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=10, ge=1, le=100, description="Items per page (max 100)"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    result = await note_service.list_notes(db=db, user_id=current_user.id, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(result.pagination.total_notes)
    response.headers["Cache-Control"] = "private, no-store"
    return result


@router.post(
    "",
    response_model=NoteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a note",
)
async def create_note(
    body: NoteWrite,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    return await note_service.create_note(
        db=db, user_id=current_user.id, title=body.title, content=body.content
    )


@router.get(
    "/{note_id}",
    response_model=NoteResponse,
    responses=_NOT_FOUND,
    summary="Get one note",
)
async def get_note(
    note_id: UUID,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    result = await note_service.get_note(db=db, user_id=current_user.id, note_id=note_id)
    response.headers["Cache-Control"] = "private, no-store"
    return result


@router.put(
    "/{note_id}",
    response_model=NoteResponse,
    responses=_NOT_FOUND,
    summary="Replace a note's title and content",
)
async def update_note(
    note_id: UUID,
    body: NoteWrite,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    return await note_service.update_note(
        db=db,
        user_id=current_user.id,
        note_id=note_id,
        title=body.title,
        content=body.content,
    )


@router.delete(
    "/{note_id}",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
    summary="Delete a note",
)
async def delete_note(
    note_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await note_service.delete_note(db=db, user_id=current_user.id, note_id=note_id)
    return MessageResponse(message="Note deleted successfully")
