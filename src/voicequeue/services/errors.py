"""Exception taxonomy shared by the resolver, pipeline, sinks and engine."""

from __future__ import annotations

from typing import Literal

PipelineStage = Literal["extractor", "transcoder"]


def format_user_error(
    *, what_failed: str, likely_cause: str, next_step: str, detail: str | None = None
) -> str:
    """Render a failure as user-facing text (what failed, cause, next step)."""
    message = f"{what_failed}\nLikely cause: {likely_cause}\nNext step: {next_step}"
    if detail:
        message = f"{message}\nDetails: {detail}"
    return message


class VoiceQueueError(Exception):
    """Base class for errors raised by voicequeue."""


class ResolutionError(VoiceQueueError):
    """Metadata lookup for a locator failed; no Track was produced."""

    def __init__(self, message: str, *, locator: str) -> None:
        super().__init__(message)
        self.locator = locator


class QueueFullError(VoiceQueueError):
    """Enqueue rejected because the queue is at capacity."""

    def __init__(self, max_size: int) -> None:
        super().__init__(f"Queue is full ({max_size} tracks).")
        self.max_size = max_size


class PipelineError(VoiceQueueError):
    """Extractor or transcoder failed to start or exited abnormally."""

    def __init__(
        self,
        message: str,
        *,
        stage: PipelineStage,
        returncode: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode
        self.detail = detail


class SinkError(VoiceQueueError):
    """Playback-side failure reported by a sink."""
