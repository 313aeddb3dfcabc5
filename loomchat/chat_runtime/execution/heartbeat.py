"""Keep-alive timer for a chat stream.

Sends a ``heartbeat`` frame every *interval* seconds until stopped.  The
timer runs inside its own cancel scope; ``stop`` cancels that scope at most
once no matter how many exit paths call it, and works even if ``run`` has
not started yet.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import anyio

from loomchat.chat_runtime.execution.frames import Frame, heartbeat_frame

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Heartbeat:
    def __init__(
        self,
        send: Callable[[Frame], Awaitable[None]],
        interval: float,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._send = send
        self._interval = interval
        self._clock = clock
        self._scope = anyio.CancelScope()
        self._stopped = False
        self.beats = 0

    async def run(self) -> None:
        with self._scope:
            while True:
                await anyio.sleep(self._interval)
                await self._send(heartbeat_frame(self._clock()))
                self.beats += 1

    def stop(self) -> bool:
        """Cancel the timer.  Returns ``False`` if it was already stopped."""
        if self._stopped:
            return False
        self._stopped = True
        self._scope.cancel()
        logger.debug("Heartbeat stopped after %d beats", self.beats)
        return True

    @property
    def stopped(self) -> bool:
        return self._stopped
