"""One playback attempt: a track, its pipeline and the feed handed to the sink.

Lifecycle::

    created -> starting -> playing -> ended
    created | starting | playing -> errored
    starting | playing -> stopped

A started session posts exactly one `SessionStarted` followed by exactly one
`SessionEnded`, whichever path it takes. `SessionStarted.reached_sink` tells
whether audio was actually handed to the sink.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Literal, Protocol

from voicequeue.events import SessionEnded, SessionOutcome, SessionStarted
from voicequeue.services.audio_feed import DEFAULT_HIGH_WATER_BYTES, AudioFeed
from voicequeue.services.errors import PipelineError, SinkError
from voicequeue.services.sink import Sink
from voicequeue.services.tracks import Track

logger = logging.getLogger(__name__)

SessionState = Literal["created", "starting", "playing", "ended", "errored", "stopped"]
TERMINAL_STATES: frozenset[str] = frozenset({"ended", "errored", "stopped"})
ACTIVE_STATES: frozenset[str] = frozenset({"starting", "playing"})


class AudioPipeline(Protocol):
    """What a session needs from a pipeline; `Pipeline` satisfies it."""

    def chunks(self) -> AsyncIterator[bytes]: ...

    async def close(self) -> None: ...


PipelineFactory = Callable[[Track], Awaitable[AudioPipeline]]
Notify = Callable[[object], None]


class StreamSession:
    """Drives one pipeline into one sink feed and reports its outcome."""

    def __init__(
        self,
        track: Track,
        *,
        sink: Sink,
        pipeline_factory: PipelineFactory,
        notify: Notify,
        high_water_bytes: int = DEFAULT_HIGH_WATER_BYTES,
    ) -> None:
        self._track = track
        self._sink = sink
        self._pipeline_factory = pipeline_factory
        self._notify = notify
        self._high_water_bytes = high_water_bytes
        self._state: SessionState = "created"
        self._error: BaseException | None = None
        self._pipeline: AudioPipeline | None = None
        self._feed: AudioFeed | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._start_notified = False
        self._end_notified = False

    def __repr__(self) -> str:
        return f"StreamSession(track={self._track.title!r}, state={self._state!r})"

    @property
    def track(self) -> Track:
        return self._track

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def resource(self) -> AudioFeed | None:
        """The feed handed to the sink, once started."""
        return self._feed

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def is_playing(self) -> bool:
        return self._state == "playing"

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    async def start(self) -> None:
        """Open the pipeline and hand a fresh feed to the sink.

        Start failures do not raise: the session ends up `errored` with the
        failure recorded in `error`.
        """
        if self._state != "created":
            raise RuntimeError("StreamSession.start() may only be called once.")
        self._state = "starting"
        logger.info("Starting session for %s", self._track.describe())
        try:
            pipeline = await self._pipeline_factory(self._track)
        except PipelineError as exc:
            logger.warning(
                "Pipeline failed to start for %s: %s", self._track.title, exc
            )
            self._finish("errored", exc)
            return
        except Exception as exc:
            logger.exception(
                "Unexpected pipeline start failure for %s", self._track.title
            )
            self._finish("errored", PipelineError(str(exc), stage="extractor"))
            return
        if self.is_terminal:
            # Stopped while the processes were spawning.
            await pipeline.close()
            return
        self._pipeline = pipeline

        feed = AudioFeed(self._track.title, high_water_bytes=self._high_water_bytes)
        self._feed = feed
        try:
            await self._sink.play(feed)
        except SinkError as exc:
            logger.warning("Sink refused %s: %s", self._track.title, exc)
            feed.close()
            await pipeline.close()
            self._finish("errored", exc)
            return
        except Exception as exc:
            logger.exception("Sink failed to accept %s", self._track.title)
            feed.close()
            await pipeline.close()
            failure = SinkError(f"Sink failed to start playback: {exc}")
            self._finish("errored", failure)
            return
        self._pump_task = asyncio.create_task(
            self._pump(pipeline, feed), name=f"voicequeue-pump:{self._track.title}"
        )

    async def complete(self, error: BaseException | None = None) -> None:
        """Apply the sink's idle signal for this session's feed."""
        if self.is_terminal or self._state == "created":
            return
        await self._release()
        if error is None and self._feed is not None:
            error = self._feed.error
        if error is None and self._state == "playing":
            self._finish("ended", None)
            return
        if error is None:
            error = SinkError("Sink went idle before any audio was played.")
        self._finish("errored", error)

    async def stop(self) -> None:
        """Interrupt playback; returns once processes and the sink are released."""
        if self.is_terminal:
            return
        if self._state == "created":
            self._state = "stopped"
            return
        await self._release()
        if self._feed is not None:
            self._feed.close()
            await self._sink.stop()
        self._finish("stopped", None)

    async def _pump(self, pipeline: AudioPipeline, feed: AudioFeed) -> None:
        try:
            async for chunk in pipeline.chunks():
                feed.feed(chunk)
                if self._state == "starting":
                    self._state = "playing"
                    self._notify_started()
                await feed.wait_writable()
        except PipelineError as exc:
            logger.warning("Pipeline failed for %s: %s", self._track.title, exc)
            feed.finish(exc)
        except Exception as exc:
            logger.exception("Unexpected pipeline failure for %s", self._track.title)
            feed.finish(PipelineError(str(exc), stage="transcoder"))
        else:
            if feed.bytes_fed == 0:
                feed.finish(
                    PipelineError("Pipeline produced no audio.", stage="transcoder")
                )
            else:
                feed.finish()
        finally:
            await pipeline.close()

    async def _release(self) -> None:
        task = self._pump_task
        self._pump_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
        if self._pipeline is not None:
            await self._pipeline.close()

    def _finish(self, state: SessionOutcome, error: BaseException | None) -> None:
        self._state = state
        self._error = error
        if error is None:
            logger.info("Session %s for %s", state, self._track.title)
        else:
            logger.warning(
                "Session %s for %s: %s", state, self._track.title, error
            )
        self._notify_ended(state, error)

    def _notify_started(self) -> None:
        if self._start_notified:
            return
        self._start_notified = True
        self._notify(SessionStarted(self._track))

    def _notify_ended(
        self, outcome: SessionOutcome, error: BaseException | None
    ) -> None:
        if self._end_notified:
            return
        self._end_notified = True
        if not self._start_notified:
            self._start_notified = True
            self._notify(SessionStarted(self._track, reached_sink=False))
        self._notify(SessionEnded(self._track, outcome, error))
