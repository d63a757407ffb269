"""voicequeue: queue web media and stream it as PCM into a sink."""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__"]
