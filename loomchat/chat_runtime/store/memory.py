"""In-process event log store.

Keeps every log in a dict keyed by ``SessionKey``.  Nothing survives a
restart; intended for tests and throwaway development servers.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loomchat.chat_runtime.models.events import Event
from loomchat.chat_runtime.models.session import SessionKey, SessionLog
from loomchat.chat_runtime.store.base import DuplicateSessionError, SessionNotFoundError


@dataclass
class _Record:
    state: dict[str, Any] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)
    last_update_time: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


class InMemoryEventLogStore:
    """Dict-backed implementation of the EventLogStore protocol."""

    def __init__(self) -> None:
        self._records: dict[SessionKey, _Record] = {}

    def _snapshot(self, key: SessionKey, record: _Record) -> SessionLog:
        return SessionLog(
            app_name=key.app_name,
            user_id=key.user_id,
            session_id=key.session_id,
            state=copy.deepcopy(record.state),
            events=[e.model_copy(deep=True) for e in record.events],
            last_update_time=record.last_update_time,
        )

    def _require(self, key: SessionKey) -> _Record:
        record = self._records.get(key)
        if record is None:
            raise SessionNotFoundError(key.session_id)
        return record

    # -- Write -----------------------------------------------------------------

    async def create_session(self, key: SessionKey, state: dict[str, Any] | None = None) -> SessionLog:
        if key in self._records:
            raise DuplicateSessionError(key.session_id)
        record = _Record(state=copy.deepcopy(state or {}))
        self._records[key] = record
        return self._snapshot(key, record)

    async def append_event(self, key: SessionKey, event: Event) -> Event:
        record = self._require(key)
        record.events.append(event.model_copy(deep=True))
        record.last_update_time = datetime.now(tz=UTC)
        return event

    async def update_state(self, key: SessionKey, delta: dict[str, Any]) -> dict[str, Any]:
        record = self._require(key)
        record.state.update(copy.deepcopy(delta))
        record.last_update_time = datetime.now(tz=UTC)
        return copy.deepcopy(record.state)

    async def delete_session(self, key: SessionKey) -> None:
        self._records.pop(key, None)

    # -- Read ------------------------------------------------------------------

    async def get_session(self, key: SessionKey) -> SessionLog | None:
        record = self._records.get(key)
        if record is None:
            return None
        return self._snapshot(key, record)

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionLog]:
        logs = [
            self._snapshot(key, record)
            for key, record in self._records.items()
            if key.app_name == app_name and key.user_id == user_id
        ]
        logs.sort(key=lambda s: s.last_update_time, reverse=True)
        return logs
