"""Versioning registry -- thread / version / title side-table keyed by session id.

Rows are created lazily: a session without a row is implicitly version 1 of
a thread whose id is its own session id.  ``record_fork`` backfills the
parent's row the first time one of its messages is edited.

The registry never touches event logs, and deleting a log never touches
the registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from loomchat.chat_runtime.db.tables import SessionMeta
from loomchat.chat_runtime.models.session import ThreadInfo

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

ROOT_VERSION = 1


def _thread_info(session_id: str, row: SessionMeta | None) -> ThreadInfo:
    if row is None:
        return ThreadInfo(session_id=session_id, thread_id=session_id, version=ROOT_VERSION)
    return ThreadInfo(
        session_id=session_id,
        thread_id=row.thread_id or session_id,
        version=max(row.version or ROOT_VERSION, ROOT_VERSION),
        parent_session_id=row.parent_session_id,
        edited_from_message_id=row.edited_from_message_id,
        title=row.title,
    )


async def describe(db: AsyncSession, session_id: str) -> ThreadInfo:
    """Resolve a session's thread identity without writing anything."""
    return _thread_info(session_id, await db.get(SessionMeta, session_id))


async def record_fork(
    db: AsyncSession,
    parent_session_id: str,
    new_session_id: str,
    cut_message_id: str,
) -> tuple[str, int]:
    """Register *new_session_id* as the next version of the parent's thread.

    Returns ``(thread_id, new_version)``.  The new version is always derived
    from the parent's resolved version, so versions never repeat or go
    backwards along a parent chain.
    """
    parent = await db.get(SessionMeta, parent_session_id)
    if parent is None:
        parent = SessionMeta(
            session_id=parent_session_id,
            thread_id=parent_session_id,
            version=ROOT_VERSION,
        )
        db.add(parent)
        logger.debug("Registry backfill: created root row for {}", parent_session_id)
    else:
        if not parent.thread_id:
            parent.thread_id = parent_session_id
        if not parent.version:
            parent.version = ROOT_VERSION

    thread_id = parent.thread_id
    new_version = max(ROOT_VERSION, parent.version) + 1

    db.add(
        SessionMeta(
            session_id=new_session_id,
            thread_id=thread_id,
            version=new_version,
            parent_session_id=parent_session_id,
            edited_from_message_id=cut_message_id,
            title=parent.title,
        )
    )
    await db.commit()

    logger.info(
        "Fork recorded: {} -> {} (thread={}, version={})",
        parent_session_id,
        new_session_id,
        thread_id,
        new_version,
    )
    return thread_id, new_version


async def list_versions(db: AsyncSession, thread_id: str) -> list[SessionMeta]:
    """All registered sessions of a thread, oldest version first."""
    result = await db.execute(
        select(SessionMeta).where(SessionMeta.thread_id == thread_id).order_by(SessionMeta.version)
    )
    return list(result.scalars().all())


# -- Titles ----------------------------------------------------------------------


async def get_title(db: AsyncSession, session_id: str) -> str | None:
    row = await db.get(SessionMeta, session_id)
    return row.title if row is not None else None


async def get_titles(db: AsyncSession, session_ids: Iterable[str]) -> dict[str, str]:
    """Batch title lookup; sessions without a title are absent from the result."""
    ids = list(session_ids)
    if not ids:
        return {}
    result = await db.execute(select(SessionMeta).where(SessionMeta.session_id.in_(ids)))
    return {row.session_id: row.title for row in result.scalars() if row.title}


async def get_thread_infos(db: AsyncSession, session_ids: Iterable[str]) -> dict[str, ThreadInfo]:
    ids = list(session_ids)
    rows: dict[str, SessionMeta] = {}
    if ids:
        result = await db.execute(select(SessionMeta).where(SessionMeta.session_id.in_(ids)))
        rows = {row.session_id: row for row in result.scalars()}
    return {sid: _thread_info(sid, rows.get(sid)) for sid in ids}


async def set_title(db: AsyncSession, session_id: str, title: str) -> None:
    """Upsert the cached title.  Concurrent writers: last write wins."""
    row = await db.get(SessionMeta, session_id)
    if row is not None:
        row.title = title
        await db.commit()
        return

    db.add(SessionMeta(session_id=session_id, title=title))
    try:
        await db.commit()
    except IntegrityError:
        # Row created concurrently; overwrite its title instead.
        await db.rollback()
        row = await db.get(SessionMeta, session_id)
        if row is None:
            raise
        row.title = title
        await db.commit()
