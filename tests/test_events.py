"""Tests for the event dispatcher and event models."""

from __future__ import annotations

import asyncio
import logging

from voicequeue.events import EventDispatcher, SessionEnded, SessionStarted
from voicequeue.services.errors import format_user_error
from voicequeue.services.tracks import Track

TRACK = Track(locator="loc", title="A", duration_s=1, duration_display="0:01")


def test_dispatcher_delivers_in_post_order_after_start() -> None:
    received: list[object] = []

    async def handler(event: object) -> None:
        await asyncio.sleep(0)
        received.append(event)

    async def run() -> None:
        dispatcher = EventDispatcher()
        dispatcher.subscribe(handler)
        await dispatcher.start()
        first = SessionStarted(TRACK)
        second = SessionEnded(TRACK, "ended")
        dispatcher.post(first)
        dispatcher.post(second)
        assert received == []
        await dispatcher.join()
        assert received == [first, second]
        await dispatcher.shutdown()

    asyncio.run(run())


def test_join_without_start_delivers_inline() -> None:
    received: list[object] = []

    async def handler(event: object) -> None:
        received.append(event)

    async def run() -> None:
        dispatcher = EventDispatcher()
        dispatcher.subscribe(handler)
        dispatcher.post("x")
        await dispatcher.shutdown()

    asyncio.run(run())
    assert received == ["x"]


def test_handler_failure_is_logged_and_others_still_run(caplog) -> None:
    received: list[object] = []

    async def broken(_event: object) -> None:
        raise RuntimeError("boom")

    async def ok(event: object) -> None:
        received.append(event)

    async def run() -> None:
        dispatcher = EventDispatcher()
        dispatcher.subscribe(broken)
        dispatcher.subscribe(ok)
        await dispatcher.start()
        dispatcher.post("x")
        await dispatcher.join()
        await dispatcher.shutdown()

    with caplog.at_level(logging.ERROR, logger="voicequeue.events"):
        asyncio.run(run())
    assert received == ["x"]
    assert "Event handler failed for str" in caplog.text


def test_session_ended_failed_flag() -> None:
    assert SessionEnded(TRACK, "errored", RuntimeError("x")).failed is True
    assert SessionEnded(TRACK, "stopped").failed is False


def test_format_user_error_layout() -> None:
    text = format_user_error(
        what_failed="Playback failed.",
        likely_cause="ffmpeg missing.",
        next_step="Run voicequeue doctor.",
        detail="exit 127",
    )
    assert text.splitlines() == [
        "Playback failed.",
        "Likely cause: ffmpeg missing.",
        "Next step: Run voicequeue doctor.",
        "Details: exit 127",
    ]
