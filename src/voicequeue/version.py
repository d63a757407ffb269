"""Release version and the `--help` footer."""

from __future__ import annotations

import platform

__all__ = ["__version__", "build_help_epilog"]

# Bumped by hand alongside pyproject.toml.
__version__ = "0.3.0"


def build_help_epilog() -> str:
    return (
        "Needs yt-dlp and ffmpeg on PATH; run `voicequeue doctor` to check.\n"
        "Settings come from VOICEQUEUE_* variables and .env files.\n"
        f"voicequeue {__version__}, Python {platform.python_version()} "
        f"on {platform.system() or 'unknown'}"
    )
