"""Local filesystem event log store.

Stores each log as a directory under the data root::

    {data_root}/sessions/{app_name}/{user_id}/{session_id}/session.json
    {data_root}/sessions/{app_name}/{user_id}/{session_id}/events.jsonl

``session.json`` holds the state map and timestamps and is rewritten
atomically (temp file + rename).  ``events.jsonl`` is append-only, one
serialised ``Event`` per line, so appends never rewrite earlier events.

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.  Writes are
serialised with a process-wide lock; this store is for single-process
deployments.
"""

from __future__ import annotations

import contextlib
import copy
import json
import os
import shutil
import tempfile
from datetime import UTC, datetime
from functools import partial
from pathlib import Path
from typing import Any

import anyio
from anyio import to_thread

from loomchat.chat_runtime.models.events import Event
from loomchat.chat_runtime.models.session import SessionKey, SessionLog
from loomchat.chat_runtime.store.base import DuplicateSessionError, SessionNotFoundError

_SESSION_FILE = "session.json"
_EVENTS_FILE = "events.jsonl"


class LocalEventLogStore:
    """Local filesystem implementation of the EventLogStore protocol."""

    def __init__(self, data_root: str | Path) -> None:
        self._base = Path(data_root) / "sessions"
        self._write_lock = anyio.Lock()

    def _session_dir(self, key: SessionKey) -> Path:
        return self._base / _segment(key.app_name) / _segment(key.user_id) / _segment(key.session_id)

    # -- Write -----------------------------------------------------------------

    async def create_session(self, key: SessionKey, state: dict[str, Any] | None = None) -> SessionLog:
        session_dir = self._session_dir(key)
        now = datetime.now(tz=UTC)
        meta = {"state": copy.deepcopy(state or {}), "created_at": now.isoformat(), "updated_at": now.isoformat()}
        async with self._write_lock:
            created = await to_thread.run_sync(partial(_create_dir, session_dir))
            if not created:
                raise DuplicateSessionError(key.session_id)
            await to_thread.run_sync(partial(_atomic_write, session_dir / _SESSION_FILE, json.dumps(meta)))
        return SessionLog(
            app_name=key.app_name,
            user_id=key.user_id,
            session_id=key.session_id,
            state=meta["state"],
            last_update_time=now,
        )

    async def append_event(self, key: SessionKey, event: Event) -> Event:
        session_dir = self._session_dir(key)
        async with self._write_lock:
            meta = await self._read_meta(key)
            await to_thread.run_sync(partial(_append_line, session_dir / _EVENTS_FILE, event.model_dump_json()))
            meta["updated_at"] = datetime.now(tz=UTC).isoformat()
            await to_thread.run_sync(partial(_atomic_write, session_dir / _SESSION_FILE, json.dumps(meta)))
        return event

    async def update_state(self, key: SessionKey, delta: dict[str, Any]) -> dict[str, Any]:
        session_dir = self._session_dir(key)
        async with self._write_lock:
            meta = await self._read_meta(key)
            meta["state"].update(copy.deepcopy(delta))
            meta["updated_at"] = datetime.now(tz=UTC).isoformat()
            await to_thread.run_sync(partial(_atomic_write, session_dir / _SESSION_FILE, json.dumps(meta)))
        return meta["state"]

    async def delete_session(self, key: SessionKey) -> None:
        async with self._write_lock:
            await to_thread.run_sync(partial(_rmtree, self._session_dir(key)))

    # -- Read ------------------------------------------------------------------

    async def get_session(self, key: SessionKey) -> SessionLog | None:
        try:
            meta = await self._read_meta(key)
        except SessionNotFoundError:
            return None
        raw_events = await to_thread.run_sync(partial(_read_lines, self._session_dir(key) / _EVENTS_FILE))
        return SessionLog(
            app_name=key.app_name,
            user_id=key.user_id,
            session_id=key.session_id,
            state=meta["state"],
            events=[Event.model_validate_json(line) for line in raw_events],
            last_update_time=datetime.fromisoformat(meta["updated_at"]),
        )

    async def list_sessions(self, app_name: str, user_id: str) -> list[SessionLog]:
        owner_dir = self._base / _segment(app_name) / _segment(user_id)
        session_ids = await to_thread.run_sync(partial(_list_dirs, owner_dir))
        logs = []
        for session_id in session_ids:
            log = await self.get_session(SessionKey(app_name, user_id, session_id))
            if log is not None:
                logs.append(log)
        logs.sort(key=lambda s: s.last_update_time, reverse=True)
        return logs

    async def _read_meta(self, key: SessionKey) -> dict[str, Any]:
        path = self._session_dir(key) / _SESSION_FILE
        try:
            raw = await to_thread.run_sync(partial(_read_file, path))
        except FileNotFoundError:
            raise SessionNotFoundError(key.session_id) from None
        return json.loads(raw)


def _segment(value: str) -> str:
    """Reject identifiers that would escape their directory."""
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        msg = f"Invalid identifier for local store: {value!r}"
        raise ValueError(msg)
    return value


# -- Sync helpers (run in thread pool) -----------------------------------------


def _create_dir(path: Path) -> bool:
    """Create *path*; return ``False`` if it already exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        path.mkdir()
    except FileExistsError:
        return False
    return True


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    The temp file is created in the same directory so ``os.replace`` is
    atomic on POSIX.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")
        f.flush()
        os.fsync(f.fileno())


def _read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _read_lines(path: Path) -> list[str]:
    if not path.exists():
        return []
    with path.open(encoding="utf-8") as f:
        return [line for line in (raw.strip() for raw in f) if line]


def _list_dirs(path: Path) -> list[str]:
    if not path.is_dir():
        return []
    return [p.name for p in path.iterdir() if p.is_dir()]


def _rmtree(path: Path) -> None:
    """Remove directory tree.  No-op if path doesn't exist."""
    if path.exists():
        shutil.rmtree(path)
