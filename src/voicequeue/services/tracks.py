"""Track value record shared by the resolver, queue and sessions."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicequeue.events import SessionEnded, SessionStarted

StartHook = Callable[["SessionStarted"], Awaitable[None]]
EndHook = Callable[["SessionEnded"], Awaitable[None]]


@dataclass(frozen=True)
class Track:
    """Resolved, immutable description of one playable source."""

    locator: str
    title: str
    duration_s: float
    duration_display: str
    on_start: StartHook | None = field(default=None, compare=False, repr=False)
    on_end: EndHook | None = field(default=None, compare=False, repr=False)

    def with_hooks(
        self,
        *,
        on_start: StartHook | None = None,
        on_end: EndHook | None = None,
    ) -> Track:
        """Return a copy carrying the given hooks (unset hooks are kept)."""
        return replace(
            self,
            on_start=on_start if on_start is not None else self.on_start,
            on_end=on_end if on_end is not None else self.on_end,
        )

    def describe(self) -> str:
        return f"{self.title} ({self.duration_display})"
