"""Fake sink for deterministic testing."""

from __future__ import annotations

import asyncio
from contextlib import suppress

from .audio_feed import AudioFeed
from .errors import SinkError
from .sink import PCM_FRAME_BYTES, IdleHandler, SinkIdle


class FakeSink:
    """In-memory sink that drains feeds on a ticker, like a real-time player."""

    def __init__(
        self,
        *,
        tick_interval_ms: int = 5,
        frame_bytes: int = PCM_FRAME_BYTES,
        frames_per_tick: int = 64,
    ) -> None:
        self._tick_interval_ms = tick_interval_ms
        self._frame_bytes = frame_bytes
        self._frames_per_tick = frames_per_tick
        self._handler: IdleHandler | None = None
        self._resource: AudioFeed | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._hold = False
        self.played: list[AudioFeed] = []
        self.stop_calls = 0
        self.bytes_played = 0

    @property
    def resource(self) -> AudioFeed | None:
        return self._resource

    def set_idle_handler(self, handler: IdleHandler) -> None:
        self._handler = handler

    def hold(self, value: bool = True) -> None:
        """Pause draining so tests can observe a track mid-play."""
        self._hold = value

    async def play(self, resource: AudioFeed) -> None:
        if self._resource is not None:
            raise SinkError("Sink already owns a resource.")
        self._resource = resource
        self.played.append(resource)
        self._task = asyncio.create_task(self._drain_loop(resource))

    async def stop(self) -> None:
        self.stop_calls += 1
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        await self._cancel_drain()
        resource.close()
        self._schedule_idle(SinkIdle(resource))

    async def fail(self, message: str = "voice transport failed") -> None:
        """Simulate a transport failure on the current resource."""
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        await self._cancel_drain()
        self._schedule_idle(SinkIdle(resource, SinkError(message)))

    async def _drain_loop(self, resource: AudioFeed) -> None:
        while True:
            await asyncio.sleep(self._tick_interval_ms / 1000)
            if self._hold:
                continue
            for _ in range(self._frames_per_tick):
                chunk = resource.read(self._frame_bytes, timeout=0)
                if not chunk:
                    break
                self.bytes_played += len(chunk)
            if resource.exhausted:
                break
        if self._resource is resource:
            self._resource = None
            self._task = None
            self._schedule_idle(SinkIdle(resource))

    async def _cancel_drain(self) -> None:
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    def _schedule_idle(self, event: SinkIdle) -> None:
        if self._handler is None:
            return
        task = asyncio.create_task(self._handler(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
