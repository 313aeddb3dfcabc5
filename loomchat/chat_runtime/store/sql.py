"""Relational event log store (PostgreSQL or SQLite through SQLAlchemy async).

Each operation opens its own short-lived ``AsyncSession`` from the factory
and commits once, so single-row creates and appends are atomic on their
own.  Event order is the autoincrement ``seq`` column.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from loomchat.chat_runtime.db.tables import Session as SessionRow
from loomchat.chat_runtime.db.tables import SessionEvent as EventRow
from loomchat.chat_runtime.db.tables import as_utc, utcnow
from loomchat.chat_runtime.models.events import Content, Event
from loomchat.chat_runtime.models.session import SessionKey, SessionLog
from loomchat.chat_runtime.store.base import DuplicateSessionError, SessionNotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _key_filter(model: type[SessionRow] | type[EventRow], key: SessionKey) -> tuple:
    return (
        model.app_name == key.app_name,
        model.user_id == key.user_id,
        model.session_id == key.session_id,
    )


def _event_from_row(row: EventRow) -> Event:
    return Event(
        id=row.event_id,
        timestamp=as_utc(row.timestamp),
        author=row.author,
        content=Content.model_validate_json(row.content) if row.content else None,
        partial=row.partial,
        turn_complete=row.turn_complete,
    )


def _log_from_rows(row: SessionRow, events: list[EventRow]) -> SessionLog:
    return SessionLog(
        app_name=row.app_name,
        user_id=row.user_id,
        session_id=row.session_id,
        state=dict(row.state or {}),
        events=[_event_from_row(e) for e in events],
        last_update_time=as_utc(row.updated_at),
    )


class SqlEventLogStore:
    """SQLAlchemy implementation of the EventLogStore protocol."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- Write -----------------------------------------------------------------

    async def create_session(self, key: SessionKey, state: dict[str, Any] | None = None) -> SessionLog:
        now = utcnow()
        row = SessionRow(
            app_name=key.app_name,
            user_id=key.user_id,
            session_id=key.session_id,
            state=dict(state or {}),
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise DuplicateSessionError(key.session_id) from None
        return _log_from_rows(row, [])

    async def append_event(self, key: SessionKey, event: Event) -> Event:
        async with self._session_factory() as db:
            session_row = await db.get(SessionRow, (key.app_name, key.user_id, key.session_id))
            if session_row is None:
                raise SessionNotFoundError(key.session_id)
            db.add(
                EventRow(
                    event_id=event.id,
                    app_name=key.app_name,
                    user_id=key.user_id,
                    session_id=key.session_id,
                    author=event.author,
                    timestamp=event.timestamp,
                    partial=event.partial,
                    turn_complete=event.turn_complete,
                    content=event.content.model_dump_json() if event.content is not None else None,
                )
            )
            session_row.updated_at = utcnow()
            await db.commit()
        return event

    async def update_state(self, key: SessionKey, delta: dict[str, Any]) -> dict[str, Any]:
        async with self._session_factory() as db:
            session_row = await db.get(SessionRow, (key.app_name, key.user_id, key.session_id))
            if session_row is None:
                raise SessionNotFoundError(key.session_id)
            # Reassign so the JSON column is flagged dirty.
            session_row.state = {**(session_row.state or {}), **delta}
            session_row.updated_at = utcnow()
            await db.commit()
            return dict(session_row.state)

    async def delete_session(self, key: SessionKey) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(EventRow).where(*_key_filter(EventRow, key)))
            await db.execute(delete(SessionRow).where(*_key_filter(SessionRow, key)))
            await db.commit()

    # -- Read ------------------------------------------------------------------

    async def get_session(self, key: SessionKey) -> SessionLog | None:
        async with self._session_factory() as db:
            session_row = await db.get(SessionRow, (key.app_name, key.user_id, key.session_id))
            if session_row is None:
                return None
            result = await db.execute(select(EventRow).where(*_key_filter(EventRow, key)).order_by(EventRow.seq))
            return _log_from_rows(session_row, list(result.scalars().all()))

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionLog]:
        async with self._session_factory() as db:
            session_rows = (
                await db.execute(
                    select(SessionRow)
                    .where(SessionRow.app_name == app_name, SessionRow.user_id == user_id)
                    .order_by(SessionRow.updated_at.desc())
                )
            ).scalars().all()
            event_rows = (
                await db.execute(
                    select(EventRow)
                    .where(EventRow.app_name == app_name, EventRow.user_id == user_id)
                    .order_by(EventRow.seq)
                )
            ).scalars().all()

            by_session: dict[str, list[EventRow]] = {}
            for event_row in event_rows:
                by_session.setdefault(event_row.session_id, []).append(event_row)
            return [_log_from_rows(row, by_session.get(row.session_id, [])) for row in session_rows]
