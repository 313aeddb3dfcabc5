"""Runtime context of one live chat stream.

Created by the chat router when a stream starts, registered in the
StreamRegistry for the lifetime of the response, and discarded when the
presenter returns.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class ActiveStream:
    """In-flight state for a single chat stream."""

    # -- Identity --------------------------------------------------------------
    app_name: str
    user_id: str
    session_id: str
    stream_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    # -- Control ---------------------------------------------------------------
    interrupted: bool = False
    """Set by ``StreamRegistry.interrupt_all``; the presenter polls it between items."""

    client_gone: bool = False
    """Set when a write to the client fails."""

    def interrupt(self) -> None:
        self.interrupted = True

    @property
    def should_stop(self) -> bool:
        return self.interrupted or self.client_gone
