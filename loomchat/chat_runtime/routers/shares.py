"""Share endpoints (RPC-style).

A share is a read-only, expiring link to one session.  ``get`` is the only
endpoint meant for people other than the owner.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from loomchat.chat_runtime.db.tables import SharedConversation, as_utc
from loomchat.chat_runtime.deps import DbSession, Directory, Settings
from loomchat.chat_runtime.managers.shares import (
    ShareExpiredError,
    ShareForbiddenError,
    ShareNotFoundError,
    create_share,
    delete_share,
    get_shared_conversation,
    list_shares,
    share_url,
)
from loomchat.chat_runtime.models.api import ShareCreate, ShareCreated, SharedConversationResponse, ShareResponse
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.base import SessionNotFoundError

router = APIRouter(prefix="/shares", tags=["shares"])


@router.post("/create", response_model=ShareCreated, status_code=status.HTTP_201_CREATED)
async def create(body: ShareCreate, db: DbSession, directory: Directory, settings: Settings) -> ShareCreated:
    key = SessionKey(body.app_name or settings.app_name, body.user_id, body.session_id)
    try:
        share = await create_share(
            db,
            directory.store,
            key,
            expiry_days=body.expiry_days,
            default_days=settings.share_default_expiry_days,
            max_days=settings.share_max_expiry_days,
        )
    except SessionNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Session '{body.session_id}' not found.") from None
    return ShareCreated(share_id=share.share_id, share_url=share_url(share.share_id), expires_at=share.expires_at)


@router.get("/list", response_model=list[ShareResponse])
async def list_user_shares(
    db: DbSession,
    user_id: str = Query(..., min_length=1),
    app_name: str | None = Query(None),
    session_id: str | None = Query(None),
) -> list[SharedConversation]:
    """The user's shares, newest first."""
    return await list_shares(db, user_id, app_name=app_name, session_id=session_id)


@router.get("/{share_id}/get", response_model=SharedConversationResponse)
async def get_shared(share_id: str, db: DbSession, directory: Directory) -> SharedConversationResponse:
    """Public read of a shared conversation."""
    try:
        view = await get_shared_conversation(db, directory.store, share_id)
    except ShareNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Share '{share_id}' not found.") from None
    except ShareExpiredError:
        raise HTTPException(status.HTTP_410_GONE, detail=f"Share '{share_id}' has expired.") from None

    return SharedConversationResponse(
        share_id=view.share.share_id,
        app_name=view.share.app_name,
        session_id=view.share.session_id,
        title=view.title,
        messages=view.messages,
        expires_at=as_utc(view.share.expires_at),
        is_expired=view.is_expired,
    )


@router.post("/{share_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete(share_id: str, db: DbSession, user_id: str = Query(..., min_length=1)) -> None:
    try:
        await delete_share(db, share_id, user_id)
    except ShareNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Share '{share_id}' not found.") from None
    except ShareForbiddenError:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Only the owner can delete a share.") from None
