"""Engine event models and the dispatcher that delivers them.

Sessions and the engine only *post* events; delivery happens on the
dispatcher's own task so track hooks and subscribers never run inside the
engine's critical section and may call back into the engine freely.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from voicequeue.services.playback_engine import PlaybackSnapshot
    from voicequeue.services.tracks import Track

logger = logging.getLogger(__name__)

SessionOutcome = Literal["ended", "errored", "stopped"]
EventHandler = Callable[[object], Awaitable[None]]


@dataclass(frozen=True)
class SessionStarted:
    """A started session began; posted once, always before its `SessionEnded`.

    `reached_sink` is False when the attempt failed before any audio was
    handed over, in which case `SessionEnded` follows immediately.
    """

    track: Track
    reached_sink: bool = True


@dataclass(frozen=True)
class SessionEnded:
    """Terminal notification for one playback attempt (delivered once)."""

    track: Track
    outcome: SessionOutcome
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.outcome == "errored"


@dataclass(frozen=True)
class EngineStateChanged:
    """Current track or queue contents changed."""

    snapshot: PlaybackSnapshot


class EventDispatcher:
    """Delivers posted events to subscribers, in post order, from one task."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def post(self, event: object) -> None:
        """Queue an event for delivery; never blocks and never runs handlers."""
        self._queue.put_nowait(event)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name="voicequeue-event-dispatcher"
            )

    async def join(self) -> None:
        """Wait until every event posted so far has been delivered.

        Must not be awaited from inside a handler.
        """
        if self._task is None:
            while not self._queue.empty():
                event = self._queue.get_nowait()
                try:
                    await self._deliver(event)
                finally:
                    self._queue.task_done()
            return
        await self._queue.join()

    async def shutdown(self) -> None:
        """Deliver pending events, then stop the dispatcher task."""
        await self.join()
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: object) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed for %s", type(event).__name__
                )
