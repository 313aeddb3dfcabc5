"""Session endpoints (RPC-style).

Sessions are also created implicitly by the chat endpoint; ``create`` exists
for clients that want an id before the first message.  Editing a message
forks the session: the client then sends the replacement content to the
returned ``new_session_id`` through the chat endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status
from loguru import logger

from loomchat.chat_runtime.deps import DbSession, Directory, Settings
from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.managers.forks import EditResult, ForkReplayError, edit_message
from loomchat.chat_runtime.managers.history import page_events
from loomchat.chat_runtime.models.api import (
    EditRequest,
    EditResponse,
    SessionCreate,
    SessionHistoryResponse,
    SessionResponse,
    SessionSummary,
    VersionResponse,
)
from loomchat.chat_runtime.models.enums import EditErrorCode
from loomchat.chat_runtime.models.input import InvalidInputError, build_user_content
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.base import DuplicateSessionError, SessionNotFoundError

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _edit_error(status_code: int, code: EditErrorCode, message: str) -> HTTPException:
    return HTTPException(status_code, detail={"message": message, "code": code.value})


@router.get("/list", response_model=list[SessionSummary])
async def list_sessions(
    db: DbSession,
    directory: Directory,
    settings: Settings,
    user_id: str = Query(..., min_length=1),
    app_name: str | None = Query(None),
) -> list[SessionSummary]:
    """List the user's sessions, most recently updated first."""
    return await directory.list_sessions(db, app_name or settings.app_name, user_id)


@router.post("/create", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(body: SessionCreate, directory: Directory, settings: Settings) -> SessionResponse:
    """Create an empty session.  The id is generated when omitted."""
    try:
        session = await directory.create(body.app_name or settings.app_name, body.user_id, body.session_id)
    except DuplicateSessionError:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Session '{body.session_id}' already exists.") from None
    return SessionResponse(
        app_name=session.app_name,
        user_id=session.user_id,
        session_id=session.session_id,
        last_update_time=session.last_update_time,
    )


@router.get("/{session_id}/history", response_model=SessionHistoryResponse)
async def get_history(
    session_id: str,
    directory: Directory,
    settings: Settings,
    user_id: str = Query(..., min_length=1),
    limit: int | None = Query(None, description="Page size; non-positive values use the default."),
    offset: int | None = Query(None, description="Messages to skip from the newest end."),
    app_name: str | None = Query(None),
) -> SessionHistoryResponse:
    """Newest-first page of display messages, returned in chronological order."""
    key = SessionKey(app_name or settings.app_name, user_id, session_id)
    try:
        session = await directory.get(key)
    except SessionNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found.") from None

    page = page_events(
        session.events,
        limit,
        offset,
        default_limit=settings.history_default_limit,
        max_limit=settings.history_max_limit,
    )
    return SessionHistoryResponse(
        session_id=session.session_id,
        app_name=session.app_name,
        user_id=session.user_id,
        messages=page.messages,
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.post("/{session_id}/edit", response_model=EditResponse, status_code=status.HTTP_201_CREATED)
async def edit_session_message(
    session_id: str,
    body: EditRequest,
    db: DbSession,
    directory: Directory,
    settings: Settings,
) -> EditResponse:
    """Fork the session just before a user message.

    The source session is never modified.  The fork becomes the next version
    of the source's thread.
    """
    try:
        build_user_content(body.new_content, body.images, body.file_names)
    except InvalidInputError as exc:
        raise _edit_error(status.HTTP_400_BAD_REQUEST, EditErrorCode.INVALID_EDIT_PAYLOAD, str(exc)) from None

    source = SessionKey(body.app_name or settings.app_name, body.user_id, session_id)
    try:
        result = await edit_message(db, directory.store, source, body.message_id)
    except SessionNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found.") from None
    except ForkReplayError as exc:
        logger.error("Edit of {} in session {} left a partial fork: {}", body.message_id, session_id, exc)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to copy the conversation, please try again.",
        ) from None

    if not isinstance(result, EditResult):
        if not result.found:
            raise _edit_error(
                status.HTTP_404_NOT_FOUND,
                EditErrorCode.MESSAGE_NOT_FOUND,
                f"Message '{body.message_id}' not found.",
            )
        raise _edit_error(
            status.HTTP_409_CONFLICT,
            EditErrorCode.MESSAGE_NOT_EDITABLE,
            "Only user messages can be edited.",
        )

    return EditResponse(
        thread_id=result.thread_id,
        new_session_id=result.new_session_id,
        version=result.version,
        edited_from_message_id=result.edited_from_message_id,
    )


@router.get("/{session_id}/versions", response_model=list[VersionResponse])
async def list_session_versions(session_id: str, db: DbSession) -> list[VersionResponse]:
    """All versions of the thread this session belongs to, oldest first."""
    info = await versions.describe(db, session_id)
    rows = await versions.list_versions(db, info.thread_id)
    if not rows:
        return [
            VersionResponse(
                session_id=session_id,
                thread_id=info.thread_id,
                version=info.version,
                title=info.title,
            )
        ]
    return [VersionResponse.model_validate(row) for row in rows]


@router.post("/{session_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    directory: Directory,
    settings: Settings,
    user_id: str = Query(..., min_length=1),
    app_name: str | None = Query(None),
) -> None:
    """Delete the session log.  Version and title records are kept."""
    try:
        await directory.delete(SessionKey(app_name or settings.app_name, user_id, session_id))
    except SessionNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{session_id}' not found.") from None
