"""Test configuration."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def ensure_current_event_loop():
    """Provide a current event loop for sync tests that build asyncio objects."""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        yield
    finally:
        loop.close()
        asyncio.set_event_loop(None)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer `VOICEQUEUE_*` settings out of test runs."""
    for key in list(os.environ):
        if key.startswith("VOICEQUEUE_"):
            monkeypatch.delenv(key, raising=False)
