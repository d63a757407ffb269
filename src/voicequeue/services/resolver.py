"""Track metadata resolution through the extractor's JSON dump mode."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from contextlib import suppress
from typing import Any

from voicequeue.runtime_config import PlaybackSettings
from voicequeue.services.errors import ResolutionError
from voicequeue.services.tracks import Track
from voicequeue.utils.time_format import format_duration_s

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 400


def build_metadata_args(locator: str, settings: PlaybackSettings) -> list[str]:
    """Extractor argv for a single-item, metadata-only JSON query."""
    return [
        settings.extractor_bin,
        "--dump-json",
        "--skip-download",
        "--no-playlist",
        "--no-warnings",
        "--geo-bypass",
        locator,
    ]


def parse_track_metadata(payload: Any, locator: str) -> Track:
    """Validate one decoded extractor JSON object and build a `Track`.

    Only the fields we rely on are checked; anything else the extractor emits
    is ignored. Any mismatch raises `ResolutionError`.
    """
    if not isinstance(payload, dict):
        raise ResolutionError("Extractor output is not a JSON object.", locator=locator)

    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ResolutionError("Extractor output has no title.", locator=locator)

    duration = payload.get("duration")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise ResolutionError(
            "Extractor output has no numeric duration (live stream?).",
            locator=locator,
        )
    duration_s = float(duration)
    if not math.isfinite(duration_s) or duration_s < 0:
        raise ResolutionError(
            f"Extractor reported an invalid duration: {duration!r}", locator=locator
        )

    url: Any = locator
    for key in ("webpage_url", "original_url"):
        if key in payload and payload[key] is not None:
            url = payload[key]
            break
    if not isinstance(url, str) or not url.strip():
        raise ResolutionError("Extractor output has an invalid URL.", locator=locator)

    display = payload.get("duration_string")
    if display is None:
        display = format_duration_s(duration_s)
    elif not isinstance(display, str):
        raise ResolutionError(
            "Extractor output has a non-string duration_string.", locator=locator
        )

    return Track(
        locator=url,
        title=title.strip(),
        duration_s=duration_s,
        duration_display=display,
    )


class TrackResolver:
    """Turns a locator into a `Track` without touching playback state."""

    def __init__(self, settings: PlaybackSettings | None = None) -> None:
        self._settings = settings or PlaybackSettings()

    async def resolve(self, locator: str) -> Track:
        locator = locator.strip()
        if not locator:
            raise ResolutionError("Empty locator.", locator=locator)
        args = build_metadata_args(locator, self._settings)
        logger.debug("Resolving metadata for %s", locator)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            raise ResolutionError(
                f"Failed to start extractor {args[0]!r}: {exc}", locator=locator
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._settings.resolve_timeout_s
            )
        except asyncio.TimeoutError as exc:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise ResolutionError(
                f"Extractor timed out after {self._settings.resolve_timeout_s:g}s.",
                locator=locator,
            ) from exc
        except asyncio.CancelledError:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            text = stderr.decode("utf-8", errors="replace").strip()
            tail = text[-_STDERR_TAIL_CHARS:]
            logger.warning(
                "Extractor exited with code %s while resolving %s",
                proc.returncode,
                locator,
                extra={"stderr_tail": tail},
            )
            message = f"Extractor exited with code {proc.returncode}."
            if tail:
                message = f"{message} {tail}"
            raise ResolutionError(message, locator=locator)

        text = stdout.decode("utf-8", errors="replace").strip()
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) != 1:
            raise ResolutionError(
                f"Expected one JSON line from extractor, got {len(lines)}.",
                locator=locator,
            )
        try:
            payload = json.loads(lines[0])
        except json.JSONDecodeError as exc:
            raise ResolutionError(
                f"Extractor output is not valid JSON: {exc}", locator=locator
            ) from exc
        track = parse_track_metadata(payload, locator)
        logger.info("Resolved %s -> %s", locator, track.describe())
        return track
