"""Sink that writes drained PCM to a local file."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from pathlib import Path

from .audio_feed import AudioFeed
from .errors import SinkError
from .sink import PCM_FRAME_BYTES, IdleHandler, SinkIdle

logger = logging.getLogger(__name__)


class FileSink:
    """Appends every played feed to one raw PCM file.

    The file is truncated when the first feed starts; later feeds are
    appended, so a whole queue lands in a single stream.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        read_size: int = PCM_FRAME_BYTES * 50,
        read_timeout_s: float = 0.25,
    ) -> None:
        self._path = Path(path)
        self._read_size = read_size
        self._read_timeout_s = read_timeout_s
        self._handler: IdleHandler | None = None
        self._resource: AudioFeed | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._truncate = True
        self.bytes_written = 0

    @property
    def path(self) -> Path:
        return self._path

    def set_idle_handler(self, handler: IdleHandler) -> None:
        self._handler = handler

    async def play(self, resource: AudioFeed) -> None:
        if self._resource is not None:
            raise SinkError("File sink already owns a resource.")
        self._resource = resource
        mode = "wb" if self._truncate else "ab"
        self._truncate = False
        self._task = asyncio.create_task(self._write_loop(resource, mode))

    async def stop(self) -> None:
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        resource.close()
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._schedule_idle(SinkIdle(resource))

    async def _write_loop(self, resource: AudioFeed, mode: str) -> None:
        loop = asyncio.get_running_loop()
        # One worker, so file operations run in submission order.
        writer = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="voicequeue-file"
        )
        error: SinkError | None = None
        try:
            try:
                handle = await loop.run_in_executor(writer, open, self._path, mode)
            except OSError as exc:
                error = SinkError(f"Cannot open {self._path}: {exc}")
            else:
                try:
                    while True:
                        chunk = await loop.run_in_executor(
                            writer, resource.read, self._read_size, self._read_timeout_s
                        )
                        if chunk:
                            await loop.run_in_executor(writer, handle.write, chunk)
                            self.bytes_written += len(chunk)
                            continue
                        if resource.exhausted:
                            break
                except OSError as exc:
                    error = SinkError(f"Cannot write {self._path}: {exc}")
                finally:
                    await loop.run_in_executor(writer, handle.close)
        finally:
            writer.shutdown(wait=False)
        if error is not None:
            logger.error("File sink failed for %s: %s", resource.label, error)
        if self._resource is resource:
            self._resource = None
            self._task = None
            self._schedule_idle(SinkIdle(resource, error))

    def _schedule_idle(self, event: SinkIdle) -> None:
        if self._handler is None:
            return
        task = asyncio.create_task(self._handler(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
