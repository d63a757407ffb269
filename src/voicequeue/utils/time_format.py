"""Duration formatting helpers for track and queue displays."""

from __future__ import annotations

import math


def format_duration_s(seconds: float) -> str:
    """Format seconds the way yt-dlp prints `duration_string` (M:SS or H:MM:SS)."""
    total = _coerce_seconds(seconds)
    hours = total // 3600
    minutes = (total // 60) % 60
    secs = total % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_total_duration(seconds: float) -> str:
    """Format a queue total as `Hh Mm Ss`."""
    total = _coerce_seconds(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours}h {minutes}m {secs}s"


def _coerce_seconds(value: float) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
