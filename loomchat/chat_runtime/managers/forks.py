"""Fork engine -- branch a conversation at a user message.

Forking never rewrites the source log.  It copies every event strictly
before the cut message into a brand-new session (fresh event ids, state map
copied by value) and then registers that session as the next version of the
source's thread.

Only user-authored messages are valid cut points.  Replay into the new log
is a sequence of independent appends: if one fails, the partially written
fork is left in place and ``ForkReplayError`` is raised.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger

from loomchat.chat_runtime.managers import versions
from loomchat.chat_runtime.managers.sessions import generate_session_id
from loomchat.chat_runtime.models.events import Event, new_event_id
from loomchat.chat_runtime.store.base import SessionNotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from loomchat.chat_runtime.models.session import SessionKey
    from loomchat.chat_runtime.store.base import EventLogStore


class ForkReplayError(RuntimeError):
    """Raised when copying events into a freshly created fork fails partway."""

    def __init__(self, new_session_id: str, copied: int, total: int) -> None:
        super().__init__(f"Fork {new_session_id} replayed {copied} of {total} events")
        self.new_session_id = new_session_id
        self.copied = copied
        self.total = total


@dataclass
class ForkResult:
    found: bool
    editable: bool
    new_session_id: str | None = None


@dataclass
class EditResult:
    thread_id: str
    new_session_id: str
    version: int
    edited_from_message_id: str


def clone_event(event: Event) -> Event:
    """Deep copy with a fresh id; a missing timestamp is stamped with now."""
    clone = event.model_copy(deep=True, update={"id": new_event_id()})
    if clone.timestamp is None:
        clone.timestamp = datetime.now(tz=UTC)
    return clone


def split_at(events: list[Event], cut_message_id: str) -> tuple[list[Event], Event | None]:
    """Return ``(events before the cut, the cut event)``; cut is ``None`` if absent."""
    prefix: list[Event] = []
    for event in events:
        if event.id == cut_message_id:
            return prefix, event
        prefix.append(event)
    return prefix, None


async def fork_session(
    store: EventLogStore,
    source: SessionKey,
    cut_message_id: str,
    *,
    new_session_id: str | None = None,
) -> ForkResult:
    """Copy the prefix of *source* before *cut_message_id* into a new session.

    Raises ``SessionNotFoundError`` if the source log does not exist.  An
    unknown cut id or a non-user cut event is reported through the result
    and leaves the store untouched.
    """
    session = await store.get_session(source)
    if session is None:
        raise SessionNotFoundError(source.session_id)

    prefix, cut = split_at(session.events, cut_message_id)
    if cut is None:
        return ForkResult(found=False, editable=False)
    if not cut.is_user_authored:
        return ForkResult(found=True, editable=False)

    copies = [clone_event(e) for e in prefix]
    target = source.with_session(new_session_id or generate_session_id())
    await store.create_session(target, state=copy.deepcopy(session.state))

    for copied, event in enumerate(copies):
        try:
            await store.append_event(target, event)
        except Exception as exc:
            logger.exception(
                "Fork replay failed: {} -> {} after {}/{} events; partial fork left in place",
                source.session_id,
                target.session_id,
                copied,
                len(copies),
            )
            raise ForkReplayError(target.session_id, copied, len(copies)) from exc

    logger.info(
        "Session forked: {} -> {} at {} ({} events copied)",
        source.session_id,
        target.session_id,
        cut_message_id,
        len(copies),
    )
    return ForkResult(found=True, editable=True, new_session_id=target.session_id)


async def edit_message(
    db: AsyncSession,
    store: EventLogStore,
    source: SessionKey,
    cut_message_id: str,
) -> EditResult | ForkResult:
    """Fork at *cut_message_id* and register the fork as the next thread version.

    Returns the ``ForkResult`` unchanged when the cut point is missing or not
    editable, otherwise an ``EditResult``.
    """
    result = await fork_session(store, source, cut_message_id)
    if not (result.found and result.editable) or result.new_session_id is None:
        return result

    thread_id, version = await versions.record_fork(db, source.session_id, result.new_session_id, cut_message_id)
    return EditResult(
        thread_id=thread_id,
        new_session_id=result.new_session_id,
        version=version,
        edited_from_message_id=cut_message_id,
    )
