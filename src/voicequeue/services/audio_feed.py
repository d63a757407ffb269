"""Push-fed PCM buffer handed to a sink for one playback attempt.

A session feeds bytes from the event loop; a sink drains them from whatever
thread its transport uses (discord.py reads from its own player thread).
"""

from __future__ import annotations

import asyncio
import threading
import time

DEFAULT_HIGH_WATER_BYTES = 4 * 1024 * 1024


class AudioFeed:
    """Thread-safe byte buffer with end/error/close signalling and backpressure."""

    def __init__(
        self,
        label: str = "",
        *,
        high_water_bytes: int = DEFAULT_HIGH_WATER_BYTES,
    ) -> None:
        self.label = label
        self._high_water = max(1, high_water_bytes)
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._finished = False
        self._closed = False
        self._error: BaseException | None = None
        self._bytes_fed = 0
        self._bytes_read = 0
        self._writable_waiter: (
            tuple[asyncio.AbstractEventLoop, asyncio.Future[None]] | None
        ) = None

    def __repr__(self) -> str:
        return (
            f"AudioFeed(label={self.label!r}, fed={self._bytes_fed}, "
            f"read={self._bytes_read}, finished={self._finished}, "
            f"closed={self._closed})"
        )

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def bytes_fed(self) -> int:
        return self._bytes_fed

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    @property
    def buffered_bytes(self) -> int:
        with self._cond:
            return len(self._buffer)

    @property
    def exhausted(self) -> bool:
        """True once nothing more will ever be readable."""
        with self._cond:
            return self._closed or (self._finished and not self._buffer)

    def feed(self, chunk: bytes) -> None:
        """Append producer bytes. Ignored after close; an error after finish."""
        if not chunk:
            return
        with self._cond:
            if self._closed:
                return
            if self._finished:
                raise RuntimeError("Cannot feed a finished AudioFeed.")
            self._buffer.extend(chunk)
            self._bytes_fed += len(chunk)
            self._cond.notify_all()

    def finish(self, error: BaseException | None = None) -> None:
        """Mark the end of input; buffered bytes stay readable."""
        with self._cond:
            if self._finished or self._closed:
                return
            self._finished = True
            self._error = error
            self._cond.notify_all()
        self._release_writer()

    def close(self) -> None:
        """Sink-side stop: drop buffered bytes and wake every waiter."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
            self._cond.notify_all()
        self._release_writer()

    def read(self, size: int, timeout: float | None = None) -> bytes:
        """Return up to `size` bytes, blocking until that many are buffered.

        Returns early with what is available when input finishes or the timeout
        elapses. `b""` means either exhausted or timed out with nothing
        buffered; check `exhausted` to tell the two apart.
        """
        if size <= 0:
            return b""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while (
                len(self._buffer) < size and not self._finished and not self._closed
            ):
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            if self._closed:
                return b""
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            self._bytes_read += len(data)
            below_mark = len(self._buffer) < self._high_water
        if data and below_mark:
            self._release_writer()
        return data

    async def wait_writable(self) -> None:
        """Suspend the producer while the buffer is above the high-water mark."""
        loop = asyncio.get_running_loop()
        while True:
            with self._cond:
                if (
                    len(self._buffer) < self._high_water
                    or self._closed
                    or self._finished
                ):
                    return
                future: asyncio.Future[None] = loop.create_future()
                self._writable_waiter = (loop, future)
            await future

    def _release_writer(self) -> None:
        with self._cond:
            waiter = self._writable_waiter
            self._writable_waiter = None
        if waiter is None:
            return
        loop, future = waiter
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(_resolve_future, future)


def _resolve_future(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
