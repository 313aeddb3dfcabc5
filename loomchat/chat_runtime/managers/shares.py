"""Share operations: time-boxed, owner-revocable read access to one session.

A share is a capability row, not part of the event log.  Anyone holding the
share id can read the conversation until ``expires_at``; only the owning
user can delete it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select

from loomchat.chat_runtime.db.tables import SharedConversation, as_utc, utcnow
from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.managers.history import build_display_messages
from loomchat.chat_runtime.models.session import SessionKey
from loomchat.chat_runtime.store.base import SessionNotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from loomchat.chat_runtime.models.session import DisplayMessage
    from loomchat.chat_runtime.store.base import EventLogStore

DEFAULT_EXPIRY_DAYS = 7
MAX_EXPIRY_DAYS = 30


class ShareNotFoundError(LookupError):
    """Raised when a share id is unknown."""


class ShareExpiredError(ValueError):
    """Raised when reading a share past its expiry."""


class ShareForbiddenError(PermissionError):
    """Raised when a non-owner tries to delete a share."""


@dataclass
class SharedConversationView:
    share: SharedConversation
    messages: list[DisplayMessage]
    title: str | None
    is_expired: bool


def resolve_expiry_days(
    expiry_days: int | None,
    *,
    default_days: int = DEFAULT_EXPIRY_DAYS,
    max_days: int = MAX_EXPIRY_DAYS,
) -> int:
    """Out-of-range or missing values fall back to the default."""
    if expiry_days is None or expiry_days < 1 or expiry_days > max_days:
        return default_days
    return expiry_days


def share_url(share_id: str) -> str:
    return f"/share/{share_id}"


async def create_share(
    db: AsyncSession,
    store: EventLogStore,
    key: SessionKey,
    *,
    expiry_days: int | None = None,
    default_days: int = DEFAULT_EXPIRY_DAYS,
    max_days: int = MAX_EXPIRY_DAYS,
) -> SharedConversation:
    """Create a share for the owner's session.

    Raises ``SessionNotFoundError`` if the session does not exist.
    """
    if await store.get_session(key) is None:
        raise SessionNotFoundError(key.session_id)

    days = resolve_expiry_days(expiry_days, default_days=default_days, max_days=max_days)
    now = utcnow()
    share = SharedConversation(
        share_id=str(uuid.uuid4()),
        app_name=key.app_name,
        user_id=key.user_id,
        session_id=key.session_id,
        expires_at=now + timedelta(days=days),
        created_at=now,
    )
    db.add(share)
    await db.commit()
    logger.info("Share created: {} for session {} (expires in {} days)", share.share_id, key.session_id, days)
    return share


async def get_shared_conversation(db: AsyncSession, store: EventLogStore, share_id: str) -> SharedConversationView:
    """Public read.  Touches ``accessed_at``.

    Raises ``ShareNotFoundError`` for an unknown id or a share whose session
    is gone, ``ShareExpiredError`` past expiry.
    """
    share = await db.get(SharedConversation, share_id)
    if share is None:
        raise ShareNotFoundError(share_id)

    now = utcnow()
    is_expired = as_utc(share.expires_at) <= now
    if is_expired:
        raise ShareExpiredError(share_id)

    session = await store.get_session(SessionKey(share.app_name, share.user_id, share.session_id))
    if session is None:
        raise ShareNotFoundError(share_id)

    share.accessed_at = now
    await db.commit()

    return SharedConversationView(
        share=share,
        messages=build_display_messages(session.events),
        title=await versions.get_title(db, share.session_id),
        is_expired=is_expired,
    )


async def delete_share(db: AsyncSession, share_id: str, user_id: str) -> None:
    """Delete a share.  Only its owner may do so."""
    share = await db.get(SharedConversation, share_id)
    if share is None:
        raise ShareNotFoundError(share_id)
    if share.user_id != user_id:
        raise ShareForbiddenError(share_id)
    await db.delete(share)
    await db.commit()
    logger.info("Share deleted: {}", share_id)


async def list_shares(
    db: AsyncSession,
    user_id: str,
    *,
    app_name: str | None = None,
    session_id: str | None = None,
) -> list[SharedConversation]:
    """The user's shares, newest first, optionally narrowed to one session."""
    stmt = select(SharedConversation).where(SharedConversation.user_id == user_id)
    if app_name is not None:
        stmt = stmt.where(SharedConversation.app_name == app_name)
    if session_id is not None:
        stmt = stmt.where(SharedConversation.session_id == session_id)
    result = await db.execute(stmt.order_by(SharedConversation.created_at.desc()))
    return list(result.scalars().all())
