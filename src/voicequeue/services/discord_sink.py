"""Sink adapter onto a connected discord.py voice client.

Joining the channel and the connection handshake stay with the caller; this
module only turns an `AudioFeed` into a `discord.AudioSource` and turns the
voice client's `after=` callback into an idle signal on the event loop.
"""

from __future__ import annotations

import asyncio
import logging

import discord

from .audio_feed import AudioFeed
from .errors import SinkError
from .sink import PCM_FRAME_BYTES, IdleHandler, SinkIdle

logger = logging.getLogger(__name__)


class FeedAudioSource(discord.AudioSource):
    """Audio source pulling PCM frames from an `AudioFeed`.

    discord.py calls ``read()`` every 20 ms from its player thread expecting
    3840 bytes of signed 16-bit stereo PCM at 48 kHz. Silence is returned while
    the feed is still buffering; ``b""`` ends playback once it is exhausted.
    """

    FRAME_SIZE = PCM_FRAME_BYTES
    SILENCE = b"\x00" * FRAME_SIZE

    def __init__(self, feed: AudioFeed, *, read_timeout_s: float = 0.015) -> None:
        self._feed = feed
        self._read_timeout_s = read_timeout_s

    def read(self) -> bytes:
        data = self._feed.read(self.FRAME_SIZE, timeout=self._read_timeout_s)
        if not data:
            return b"" if self._feed.exhausted else self.SILENCE
        if len(data) < self.FRAME_SIZE:
            data += b"\x00" * (self.FRAME_SIZE - len(data))
        return data

    def is_opus(self) -> bool:
        return False

    def cleanup(self) -> None:
        self._feed.close()


class DiscordVoiceSink:
    """Plays feeds through one `discord.VoiceClient`."""

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._voice_client = voice_client
        self._loop = loop
        self._handler: IdleHandler | None = None
        self._resource: AudioFeed | None = None

    def set_idle_handler(self, handler: IdleHandler) -> None:
        self._handler = handler

    async def play(self, resource: AudioFeed) -> None:
        if self._resource is not None:
            raise SinkError("Voice sink already owns a resource.")
        if not self._voice_client.is_connected():
            raise SinkError("Voice client is not connected.")
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        source = FeedAudioSource(resource)
        try:
            self._voice_client.play(
                source, after=lambda error: self._after(resource, error)
            )
        except (discord.DiscordException, TypeError, ValueError) as exc:
            raise SinkError(f"Voice client refused playback: {exc}") from exc
        self._resource = resource

    async def stop(self) -> None:
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        resource.close()
        self._voice_client.stop()

    def _after(self, resource: AudioFeed, error: Exception | None) -> None:
        """Runs on discord's player thread once a source stops."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        sink_error: SinkError | None = None
        if error is not None:
            logger.error("Voice playback failed for %s: %s", resource.label, error)
            sink_error = SinkError(f"Voice playback failed: {error}")
        asyncio.run_coroutine_threadsafe(
            self._dispatch(SinkIdle(resource, sink_error)), loop
        )

    async def _dispatch(self, event: SinkIdle) -> None:
        if self._resource is event.resource:
            self._resource = None
        if self._handler is not None:
            await self._handler(event)
