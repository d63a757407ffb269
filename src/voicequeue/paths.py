"""Per-user locations for log files and the fallback `.env`."""

from __future__ import annotations

from pathlib import Path

from platformdirs import user_config_path, user_log_path

APP_NAME = "voicequeue"


def log_dir() -> Path:
    """Directory for rotating log files, created on first use."""
    return user_log_path(APP_NAME, appauthor=False, ensure_exists=True)


def env_file_path() -> Path:
    """User-level `.env`, read after the one found from the working directory.

    Nothing is created here; the CLI skips the file when it is absent.
    """
    return user_config_path(APP_NAME, appauthor=False) / ".env"
