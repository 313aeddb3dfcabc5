"""In-process stream registry.

Tracks live chat streams (for graceful shutdown and interrupt) and the
detached background tasks spawned on their behalf (conversation titles).
Ephemeral -- empty on process restart.  All durable state lives in the
event log store and the database.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

    from loomchat.chat_runtime.context import ActiveStream


class ShuttingDownError(RuntimeError):
    """Raised when attempting to register a stream during shutdown."""


class StreamRegistry:
    """Registry of currently open chat streams.

    Provides a drain mechanism for graceful shutdown: ``wait_until_drained``
    blocks until all streams have been unregistered.
    """

    def __init__(self) -> None:
        self._streams: dict[str, ActiveStream] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no streams).
        self._shutting_down = False
        self._background: set[asyncio.Task] = set()

    # -- Mutation --------------------------------------------------------------

    def register(self, stream: ActiveStream) -> None:
        """Register a stream.  Raises ``ShuttingDownError`` if shutting down."""
        if self._shutting_down:
            raise ShuttingDownError
        logger.debug("Registry: register stream {} (session={})", stream.stream_id, stream.session_id)
        self._streams[stream.stream_id] = stream
        self._drain_event.clear()

    def unregister(self, stream_id: str) -> ActiveStream | None:
        stream = self._streams.pop(stream_id, None)
        if stream:
            logger.debug("Registry: unregister stream {}", stream_id)
        if not self._streams:
            self._drain_event.set()
        return stream

    # -- Query -----------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self._streams)

    @property
    def background_count(self) -> int:
        return len(self._background)

    # -- Background tasks ------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        """Run *coro* detached from the caller's request.

        The registry keeps a strong reference until the task finishes so it
        is not garbage-collected mid-flight.
        """
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def cancel_background(self, timeout: float = 5.0) -> int:
        """Cancel pending background tasks and wait briefly for them to exit."""
        pending = [t for t in self._background if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=timeout)
            logger.info("Registry: cancelled {} background tasks", len(pending))
        return len(pending)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new streams")
        if not self._streams:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # -- Control ---------------------------------------------------------------

    def interrupt_all(self) -> int:
        """Ask every live stream to stop at its next item boundary.

        Last resort during forced shutdown.  Returns the number of streams
        interrupted.
        """
        for stream in self._streams.values():
            stream.interrupt()
            logger.info("Registry: interrupted stream {} (session={})", stream.stream_id, stream.session_id)
        return len(self._streams)

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all streams have been unregistered.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with streams still open.
        """
        if not self._streams:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} streams still open",
                timeout,
                len(self._streams),
            )
            return False
        else:
            return True
