"""Playback sink contract and idle-signal payload.

`PlaybackEngine` depends on this protocol to stay transport-agnostic. Concrete
sinks (fake/file/discord) drain an `AudioFeed` and report when it stops.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from voicequeue.services.audio_feed import AudioFeed

# 20 ms of 48 kHz stereo signed 16-bit PCM.
PCM_FRAME_BYTES = 3840


@dataclass(frozen=True)
class SinkIdle:
    """The sink stopped playing `resource`, naturally or because of `error`."""

    resource: AudioFeed
    error: BaseException | None = None


IdleHandler = Callable[[SinkIdle], Awaitable[None]]


class Sink(Protocol):
    """Audio output consumed by `PlaybackEngine`.

    Implementations must never invoke the idle handler synchronously from
    `play()` or `stop()`; the signal is always scheduled separately. Stopping a
    resource still produces an idle signal for it.
    """

    def set_idle_handler(self, handler: IdleHandler) -> None: ...

    async def play(self, resource: AudioFeed) -> None: ...

    async def stop(self) -> None: ...
