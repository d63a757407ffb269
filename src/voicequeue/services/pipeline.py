"""Extractor -> transcoder process pipeline producing raw PCM.

The extractor's stdout is wired straight into the transcoder's stdin through an
OS pipe; the parent closes its copies of both pipe ends as soon as the two
processes are running, so the pipe lives exactly as long as the processes do.
Only the transcoder's stdout is read by Python.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import AsyncIterator, Sequence
from contextlib import suppress
from typing import TYPE_CHECKING

from voicequeue.runtime_config import PlaybackSettings
from voicequeue.services.errors import PipelineError

if TYPE_CHECKING:
    from voicequeue.services.tracks import Track

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 16 * 1024
EXTRACTOR_EXIT_GRACE_S = 2.0
_STDERR_TAIL_CHARS = 2_000
_USE_PROCESS_GROUPS = os.name == "posix"


def build_extractor_args(locator: str, settings: PlaybackSettings) -> list[str]:
    """Extractor argv streaming best audio (bitrate-capped) to stdout."""
    return [
        settings.extractor_bin,
        "-f",
        settings.audio_format_selector,
        "--no-playlist",
        "--no-warnings",
        "--geo-bypass",
        "--quiet",
        "-o",
        "-",
        locator,
    ]


def build_transcoder_args(settings: PlaybackSettings) -> list[str]:
    """Transcoder argv: stdin -> fixed-layout attenuated PCM on stdout."""
    return [
        settings.transcoder_bin,
        "-hide_banner",
        "-loglevel",
        "warning",
        "-i",
        "pipe:0",
        "-vn",
        "-ac",
        str(settings.channels),
        "-ar",
        str(settings.sample_rate),
        "-filter:a",
        f"volume={settings.volume:g}",
        "-f",
        settings.output_format,
        "pipe:1",
    ]


class _StderrTail:
    """Continuously drains a child's stderr, keeping the last few KB."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._text = ""

    @property
    def text(self) -> str:
        return self._text.strip()

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            data = await stream.read(4096)
            if not data:
                return
            decoded = data.decode("utf-8", errors="replace")
            self._text = (self._text + decoded)[-_STDERR_TAIL_CHARS:]
            logger.debug("%s stderr: %s", self._name, decoded.rstrip())


class Pipeline:
    """Two chained OS processes exposed as one single-use async byte stream."""

    def __init__(
        self,
        extractor: asyncio.subprocess.Process,
        transcoder: asyncio.subprocess.Process,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        label: str = "",
    ) -> None:
        self._extractor = extractor
        self._transcoder = transcoder
        self._chunk_size = max(1, chunk_size)
        self._label = label
        self._closed = False
        self._released = False
        self._consumed = False
        self._reading = False
        self._bytes_emitted = 0
        self._error: PipelineError | None = None
        self._close_lock = asyncio.Lock()
        self._extractor_tail = _StderrTail("extractor")
        self._transcoder_tail = _StderrTail("transcoder")
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    async def open(
        cls, track: Track, settings: PlaybackSettings | None = None
    ) -> Pipeline:
        """Spawn the extractor/transcoder pair for one playback attempt."""
        settings = settings or PlaybackSettings()
        return await cls.spawn(
            build_extractor_args(track.locator, settings),
            build_transcoder_args(settings),
            chunk_size=settings.chunk_size,
            label=track.title,
        )

    @classmethod
    async def spawn(
        cls,
        extractor_args: Sequence[str],
        transcoder_args: Sequence[str],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        label: str = "",
    ) -> Pipeline:
        try:
            read_fd, write_fd = os.pipe()
        except OSError as exc:
            raise PipelineError(
                f"Failed to create the extractor pipe: {exc}", stage="extractor"
            ) from exc
        try:
            try:
                extractor = await asyncio.create_subprocess_exec(
                    *extractor_args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=write_fd,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=_USE_PROCESS_GROUPS,
                )
            except (OSError, ValueError) as exc:
                raise PipelineError(
                    f"Failed to start extractor {extractor_args[0]!r}: {exc}",
                    stage="extractor",
                ) from exc
            try:
                transcoder = await asyncio.create_subprocess_exec(
                    *transcoder_args,
                    stdin=read_fd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=_USE_PROCESS_GROUPS,
                )
            except (OSError, ValueError) as exc:
                _kill_process(extractor)
                await extractor.wait()
                raise PipelineError(
                    f"Failed to start transcoder {transcoder_args[0]!r}: {exc}",
                    stage="transcoder",
                ) from exc
        finally:
            os.close(read_fd)
            os.close(write_fd)

        pipeline = cls(extractor, transcoder, chunk_size=chunk_size, label=label)
        pipeline._start_watchers()
        logger.info(
            "Pipeline started for %s (extractor pid=%s, transcoder pid=%s)",
            label or "<unnamed>",
            extractor.pid,
            transcoder.pid,
        )
        return pipeline

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bytes_emitted(self) -> int:
        return self._bytes_emitted

    @property
    def extractor_returncode(self) -> int | None:
        return self._extractor.returncode

    @property
    def transcoder_returncode(self) -> int | None:
        return self._transcoder.returncode

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield transcoder output until it closes; raise on process failure."""
        if self._consumed:
            raise RuntimeError("Pipeline output can only be consumed once.")
        self._consumed = True
        stdout = self._transcoder.stdout
        if stdout is None:
            raise RuntimeError("Transcoder stdout is not piped.")
        while not self._closed:
            self._reading = True
            try:
                chunk = await stdout.read(self._chunk_size)
            finally:
                self._reading = False
            if not chunk:
                break
            self._bytes_emitted += len(chunk)
            yield chunk
        if self._closed:
            return

        transcoder_code = await self._transcoder.wait()
        extractor_code = await self._wait_extractor_exit()
        if self._error is not None:
            raise self._error
        if extractor_code not in (0, None) and self._bytes_emitted == 0:
            raise self._extractor_failure(extractor_code)
        if transcoder_code != 0:
            raise PipelineError(
                f"Transcoder exited with code {transcoder_code}.",
                stage="transcoder",
                returncode=transcoder_code,
                detail=self._transcoder_tail.text or None,
            )
        logger.info(
            "Pipeline finished for %s (%d bytes)",
            self._label or "<unnamed>",
            self._bytes_emitted,
        )

    async def close(self) -> None:
        """Stop forwarding, kill both processes and reap them. Idempotent."""
        self._closed = True
        async with self._close_lock:
            if self._released:
                return
            _kill_process(self._extractor)
            _kill_process(self._transcoder)
            await asyncio.gather(
                self._discard_output(),
                self._extractor.wait(),
                self._transcoder.wait(),
            )
            for task in self._tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._released = True
            logger.debug(
                "Pipeline released for %s (extractor=%s, transcoder=%s)",
                self._label or "<unnamed>",
                self._extractor.returncode,
                self._transcoder.returncode,
            )

    def _start_watchers(self) -> None:
        if self._extractor.stderr is not None:
            self._tasks.append(
                asyncio.create_task(self._extractor_tail.drain(self._extractor.stderr))
            )
        if self._transcoder.stderr is not None:
            self._tasks.append(
                asyncio.create_task(
                    self._transcoder_tail.drain(self._transcoder.stderr)
                )
            )
        self._tasks.append(asyncio.create_task(self._watch_extractor()))

    async def _watch_extractor(self) -> None:
        code = await self._extractor.wait()
        if self._closed or code == 0:
            return
        if self._bytes_emitted == 0:
            self._error = self._extractor_failure(code)
            logger.warning(
                "Extractor failed before producing audio for %s (code %s); "
                "terminating transcoder",
                self._label or "<unnamed>",
                code,
            )
            _kill_process(self._transcoder)
            return
        logger.warning(
            "Extractor exited with code %s after %d bytes for %s; draining transcoder",
            code,
            self._bytes_emitted,
            self._label or "<unnamed>",
        )

    async def _wait_extractor_exit(self) -> int | None:
        try:
            return await asyncio.wait_for(
                self._extractor.wait(), timeout=EXTRACTOR_EXIT_GRACE_S
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Extractor still running after transcoder exit for %s; killing it",
                self._label or "<unnamed>",
            )
            _kill_process(self._extractor)
            await self._extractor.wait()
            return None

    async def _discard_output(self) -> None:
        # Unread stdout can leave the transport paused, which would keep the
        # pipe open and stall wait() after the kill.
        stdout = self._transcoder.stdout
        if stdout is None or self._reading:
            return
        while await stdout.read(self._chunk_size):
            pass

    def _extractor_failure(self, code: int) -> PipelineError:
        return PipelineError(
            f"Extractor exited with code {code} before producing audio.",
            stage="extractor",
            returncode=code,
            detail=self._extractor_tail.text or None,
        )


def _kill_process(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL a still-running child (and its process group on POSIX)."""
    if proc.returncode is not None:
        return
    if _USE_PROCESS_GROUPS:
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
            return
    with suppress(ProcessLookupError):
        proc.kill()
