"""Bounded FIFO of tracks waiting to be played."""

from __future__ import annotations

from collections import deque

from voicequeue.services.errors import QueueFullError
from voicequeue.services.tracks import Track

DEFAULT_MAX_SIZE = 50


class PlaybackQueue:
    """Tracks leave only from the front, in the order they were added."""

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._items: deque[Track] = deque()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self._max_size

    def size(self) -> int:
        return len(self._items)

    def enqueue(self, track: Track) -> int:
        """Append `track` and return its 1-based position."""
        if self.is_full:
            raise QueueFullError(self._max_size)
        self._items.append(track)
        return len(self._items)

    def dequeue_next(self) -> Track | None:
        if not self._items:
            return None
        return self._items.popleft()

    def peek_all(self) -> tuple[Track, ...]:
        return tuple(self._items)

    def total_duration_s(self) -> float:
        return sum(track.duration_s for track in self._items)
