"""Runtime configuration normalization helpers.

These helpers keep CLI flag and environment interpretation deterministic across
entrypoints. Invalid values degrade to defaults instead of aborting startup.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ENV_PREFIX = "VOICEQUEUE_"
SAMPLE_RATE_HZ = 48_000
CHANNELS = 2
QUEUE_SIZE_MIN = 1
QUEUE_SIZE_MAX = 1_000
VOLUME_MIN = 0.0
VOLUME_MAX = 2.0


def resolve_log_level(*, verbose: bool, quiet: bool) -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return "INFO"


@dataclass(frozen=True)
class PlaybackSettings:
    """Tunables for metadata lookup, the process pipeline and the queue."""

    extractor_bin: str = "yt-dlp"
    transcoder_bin: str = "ffmpeg"
    max_audio_bitrate_kbps: int = 128
    sample_rate: int = SAMPLE_RATE_HZ
    channels: int = CHANNELS
    volume: float = 0.5
    output_format: str = "s16le"
    queue_max_size: int = 50
    resolve_timeout_s: float = 30.0
    chunk_size: int = 16 * 1024
    feed_high_water_bytes: int = 4 * 1024 * 1024

    @property
    def audio_format_selector(self) -> str:
        """yt-dlp format selector capped at the configured bitrate."""
        return (
            f"bestaudio[abr<={self.max_audio_bitrate_kbps}]/bestaudio/best"
        )


def load_settings(environ: Mapping[str, str] | None = None) -> PlaybackSettings:
    """Build settings from `VOICEQUEUE_*` variables layered over defaults."""
    env = os.environ if environ is None else environ
    defaults = PlaybackSettings()

    def _get(name: str) -> str | None:
        value = env.get(ENV_PREFIX + name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def _str_or_default(name: str, default: str) -> str:
        value = _get(name)
        return default if value is None else value

    def _int_or_default(name: str, default: int, low: int, high: int) -> int:
        value = _get(name)
        if value is None:
            return default
        try:
            parsed = int(value)
        except ValueError:
            logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, name, value)
            return default
        return max(low, min(parsed, high))

    def _float_or_default(name: str, default: float, low: float, high: float) -> float:
        value = _get(name)
        if value is None:
            return default
        try:
            parsed = float(value)
        except ValueError:
            logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, name, value)
            return default
        if not math.isfinite(parsed):
            logger.warning("Ignoring non-finite %s%s=%r", ENV_PREFIX, name, value)
            return default
        return max(low, min(parsed, high))

    return PlaybackSettings(
        extractor_bin=_str_or_default("EXTRACTOR", defaults.extractor_bin),
        transcoder_bin=_str_or_default("TRANSCODER", defaults.transcoder_bin),
        max_audio_bitrate_kbps=_int_or_default(
            "MAX_BITRATE_KBPS", defaults.max_audio_bitrate_kbps, 8, 512
        ),
        volume=_float_or_default("VOLUME", defaults.volume, VOLUME_MIN, VOLUME_MAX),
        queue_max_size=_int_or_default(
            "QUEUE_MAX_SIZE", defaults.queue_max_size, QUEUE_SIZE_MIN, QUEUE_SIZE_MAX
        ),
        resolve_timeout_s=_float_or_default(
            "RESOLVE_TIMEOUT_S", defaults.resolve_timeout_s, 1.0, 300.0
        ),
        chunk_size=_int_or_default("CHUNK_SIZE", defaults.chunk_size, 1024, 1 << 20),
        feed_high_water_bytes=_int_or_default(
            "FEED_HIGH_WATER_BYTES",
            defaults.feed_high_water_bytes,
            64 * 1024,
            256 * 1024 * 1024,
        ),
    )
