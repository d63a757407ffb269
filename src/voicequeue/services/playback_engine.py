"""Playback orchestration between the command layer, the queue and the sink.

`PlaybackEngine` is the queue/now-playing authority. It owns the single sink
subscription, keeps at most one `StreamSession` active, advances the queue when
the sink reports idle, and posts domain events for status displays.

Every mutation runs under one `asyncio.Lock`. Session notifications are posted
to an `EventDispatcher`, so hooks and subscribers run after the critical
section and may call back into the engine.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial

from voicequeue.events import (
    EngineStateChanged,
    EventDispatcher,
    EventHandler,
    SessionEnded,
    SessionStarted,
)
from voicequeue.runtime_config import PlaybackSettings
from voicequeue.services.errors import QueueFullError
from voicequeue.services.pipeline import Pipeline
from voicequeue.services.playback_queue import PlaybackQueue
from voicequeue.services.resolver import TrackResolver
from voicequeue.services.sink import Sink, SinkIdle
from voicequeue.services.stream_session import PipelineFactory, StreamSession
from voicequeue.services.tracks import Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Read-only view of the engine for status displays."""

    is_playing: bool
    current_track: Track | None
    queue: tuple[Track, ...]
    queue_duration_s: float


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of queueing a locator: the resolved track and its position.

    Position 0 means the track started playing immediately.
    """

    track: Track
    position: int


class PlaybackEngine:
    """Owns the queue and the current session and serializes every change."""

    def __init__(
        self,
        *,
        sink: Sink,
        settings: PlaybackSettings | None = None,
        resolver: TrackResolver | None = None,
        pipeline_factory: PipelineFactory | None = None,
        queue: PlaybackQueue | None = None,
    ) -> None:
        self._settings = settings or PlaybackSettings()
        self._sink = sink
        self._resolver = resolver or TrackResolver(self._settings)
        self._pipeline_factory: PipelineFactory = pipeline_factory or partial(
            Pipeline.open, settings=self._settings
        )
        self._queue = queue or PlaybackQueue(self._settings.queue_max_size)
        self._current: StreamSession | None = None
        self._lock = asyncio.Lock()
        self._dispatcher = EventDispatcher()
        self._dispatcher.subscribe(self._run_track_hooks)
        self._sink.set_idle_handler(self._handle_sink_idle)

    async def start(self) -> None:
        await self._dispatcher.start()

    async def shutdown(self) -> None:
        """Stop the current session and deliver pending notifications."""
        async with self._lock:
            if self._current is not None:
                await self._current.stop()
                self._current = None
        await self._dispatcher.shutdown()

    def subscribe(self, handler: EventHandler) -> None:
        """Register an async listener for session and engine events."""
        self._dispatcher.subscribe(handler)

    async def wait_for_notifications(self) -> None:
        """Wait until every event posted so far has been delivered."""
        await self._dispatcher.join()

    # Queries -------------------------------------------------------------

    def is_playing(self) -> bool:
        return self._current is not None and self._current.is_playing

    def current_track(self) -> Track | None:
        return None if self._current is None else self._current.track

    def queue_snapshot(self) -> tuple[Track, ...]:
        return self._queue.peek_all()

    def queue_duration_s(self) -> float:
        """Remaining time: current track plus everything queued."""
        total = self._queue.total_duration_s()
        if self._current is not None:
            total += self._current.track.duration_s
        return total

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            is_playing=self.is_playing(),
            current_track=self.current_track(),
            queue=self.queue_snapshot(),
            queue_duration_s=self.queue_duration_s(),
        )

    # Commands ------------------------------------------------------------

    async def enqueue(self, track: Track) -> int:
        """Queue `track`; start it at once when nothing is active.

        Returns the queue position, or 0 when the track started immediately.
        """
        async with self._lock:
            position = self._queue.enqueue(track)
            logger.info("Queued %s at position %d", track.describe(), position)
            if self._current is None:
                await self._advance()
                # The new track sits at the tail, so it left the queue only if
                # the queue is now empty.
                position = len(self._queue)
            self._post_state()
        return position

    async def enqueue_locator(self, locator: str) -> EnqueueResult:
        """Resolve a locator and queue the resulting track."""
        if self._queue.is_full:
            raise QueueFullError(self._queue.max_size)
        track = await self._resolver.resolve(locator)
        position = await self.enqueue(track)
        return EnqueueResult(track=track, position=position)

    async def play_now(self, track: Track) -> None:
        """Replace whatever is playing with `track`; the queue is untouched."""
        async with self._lock:
            await self._stop_current()
            if not await self._start_session(track):
                await self._advance()
            self._post_state()

    async def skip(self) -> Track | None:
        """Stop the current track and promote the next one exactly once."""
        async with self._lock:
            session = self._current
            if session is None:
                return None
            await self._stop_current()
            await self._advance()
            self._post_state()
            return session.track

    async def stop(self) -> None:
        """Stop the current track without advancing; the queue is kept."""
        async with self._lock:
            if self._current is None:
                return
            await self._stop_current()
            self._post_state()

    # Internals -----------------------------------------------------------

    async def _handle_sink_idle(self, event: SinkIdle) -> None:
        async with self._lock:
            session = self._current
            if session is None or session.resource is not event.resource:
                logger.debug(
                    "Ignoring idle signal for inactive feed %r", event.resource
                )
                return
            await session.complete(event.error)
            self._current = None
            await self._advance()
            self._post_state()

    async def _stop_current(self) -> None:
        session = self._current
        if session is None:
            return
        await session.stop()
        self._current = None

    async def _advance(self) -> None:
        """Start queued tracks until one is active or the queue is empty."""
        while self._current is None:
            track = self._queue.dequeue_next()
            if track is None:
                logger.info("Queue empty; playback idle")
                return
            await self._start_session(track)

    async def _start_session(self, track: Track) -> bool:
        session = StreamSession(
            track,
            sink=self._sink,
            pipeline_factory=self._pipeline_factory,
            notify=self._dispatcher.post,
            high_water_bytes=self._settings.feed_high_water_bytes,
        )
        self._current = session
        await session.start()
        if session.is_active:
            return True
        self._current = None
        return False

    def _post_state(self) -> None:
        self._dispatcher.post(EngineStateChanged(self.snapshot()))

    async def _run_track_hooks(self, event: object) -> None:
        if isinstance(event, SessionStarted) and event.track.on_start is not None:
            await event.track.on_start(event)
        elif isinstance(event, SessionEnded) and event.track.on_end is not None:
            await event.track.on_end(event)
