"""Session directory -- maps (app, user, session id) to an event log.

The SessionDirectory is a process-level singleton initialised in the app
lifespan.  It wraps the event log store with the lifecycle rules the API
relies on:

- ``ensure`` creates an empty log on first reference and is idempotent.
- ``list_sessions`` enriches logs with registry data (title, thread,
  version) for the session sidebar.

Methods that read the versioning registry accept an ``AsyncSession`` (DB)
parameter so that database access follows FastAPI's per-request dependency
injection pattern.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger

from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.managers.history import build_display_messages
from loomchat.chat_runtime.models.api import SessionSummary
from loomchat.chat_runtime.models.enums import DisplayRole
from loomchat.chat_runtime.models.session import SessionKey, SessionLog
from loomchat.chat_runtime.store.base import DuplicateSessionError, SessionNotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from loomchat.chat_runtime.store.base import EventLogStore

FIRST_MESSAGE_PREVIEW = 50


def generate_session_id(now: datetime | None = None) -> str:
    """``session-YYYYMMDD-HHMMSS-<8 hex>``; sortable by creation time."""
    now = now or datetime.now(tz=UTC)
    return f"session-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(4)}"


def _preview(text: str) -> str:
    if len(text) <= FIRST_MESSAGE_PREVIEW:
        return text
    return text[:FIRST_MESSAGE_PREVIEW] + "..."


class SessionDirectory:
    """Lifecycle rules over an ``EventLogStore``.

    Stateless beyond its reference to the store.
    """

    def __init__(self, store: EventLogStore) -> None:
        self._store = store

    @property
    def store(self) -> EventLogStore:
        return self._store

    # -- Create ----------------------------------------------------------------

    async def ensure(self, key: SessionKey) -> SessionLog:
        """Return the log for *key*, creating an empty one if missing.

        Store errors propagate unchanged; nothing is retried here.
        """
        session = await self._store.get_session(key)
        if session is not None:
            return session
        try:
            session = await self._store.create_session(key, state={})
        except DuplicateSessionError:
            # Lost a creation race; the winner's log is the one to use.
            session = await self._store.get_session(key)
            if session is None:
                raise
            return session
        logger.info("Session created: {} (app={}, user={})", key.session_id, key.app_name, key.user_id)
        return session

    async def create(self, app_name: str, user_id: str, session_id: str | None = None) -> SessionLog:
        """Create a new empty log.  Raises ``DuplicateSessionError`` if the id is taken."""
        key = SessionKey(app_name, user_id, session_id or generate_session_id())
        session = await self._store.create_session(key, state={})
        logger.info("Session created: {} (app={}, user={})", key.session_id, app_name, user_id)
        return session

    # -- Read ------------------------------------------------------------------

    async def get(self, key: SessionKey) -> SessionLog:
        """Raises ``SessionNotFoundError`` if missing."""
        session = await self._store.get_session(key)
        if session is None:
            raise SessionNotFoundError(key.session_id)
        return session

    async def list_sessions(self, db: AsyncSession, app_name: str, user_id: str) -> list[SessionSummary]:
        """Summaries of the user's sessions, most recently updated first."""
        logs = await self._store.list_sessions(app_name, user_id)
        infos = await versions.get_thread_infos(db, [log.session_id for log in logs])

        summaries = []
        for log in logs:
            messages = build_display_messages(log.events)
            first_user = next((m.content for m in messages if m.role == DisplayRole.USER and m.content), "")
            info = infos[log.session_id]
            summaries.append(
                SessionSummary(
                    session_id=log.session_id,
                    app_name=log.app_name,
                    user_id=log.user_id,
                    last_update_time=log.last_update_time,
                    message_count=len(messages),
                    first_message=_preview(first_user),
                    title=info.title,
                    thread_id=info.thread_id,
                    version=info.version,
                )
            )
        return summaries

    # -- Delete ----------------------------------------------------------------

    async def delete(self, key: SessionKey) -> None:
        """Delete the log.  Registry rows are left alone.

        Raises ``SessionNotFoundError`` if missing.
        """
        if await self._store.get_session(key) is None:
            raise SessionNotFoundError(key.session_id)
        await self._store.delete_session(key)
        logger.info("Session deleted: {} (app={}, user={})", key.session_id, key.app_name, key.user_id)
