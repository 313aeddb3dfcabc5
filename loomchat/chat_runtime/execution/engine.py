"""Agent engine interface.

The engine turns a user message plus the session's history into a stream of
``Event`` items.  The chat runtime never looks inside: it only relays the
stream (see ``presenter``) and reads the log afterwards.

Contract for implementations:

- ``run`` is an async generator; items are yielded in order.
- Incremental text is yielded as ``partial=True`` events.  Once all chunks
  of a turn were yielded, the engine may yield the aggregated text again as
  a single non-partial event; clients never see that duplicate.
- Failures are raised from the iterator.  A missing session raises
  ``SessionNotFoundError``; ``EngineError`` carries a message that is safe to
  show to end users; anything else is treated as an internal error.
- The engine persists the events it produces (the user message included).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from loomchat.chat_runtime.models.events import Content, Event


class EngineError(RuntimeError):
    """Engine failure whose message may be shown to the client as-is."""


@dataclass
class RunOptions:
    app_name: str


@runtime_checkable
class AgentEngine(Protocol):
    def run(
        self,
        user_id: str,
        session_id: str,
        message: Content,
        options: RunOptions,
    ) -> AsyncIterator[Event]:
        """Stream the engine's events for one user turn."""
        ...
