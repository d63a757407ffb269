"""Tests for the fake and file sinks."""

from __future__ import annotations

import asyncio

import pytest

from voicequeue.services.audio_feed import AudioFeed
from voicequeue.services.errors import SinkError
from voicequeue.services.fake_sink import FakeSink
from voicequeue.services.file_sink import FileSink
from voicequeue.services.sink import SinkIdle


def _run(coro):
    return asyncio.run(coro)


def _recorder():
    events: list[SinkIdle] = []

    async def handler(event: SinkIdle) -> None:
        events.append(event)

    return events, handler


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def test_fake_sink_drains_and_signals_idle_once() -> None:
    async def run() -> None:
        events, handler = _recorder()
        sink = FakeSink(tick_interval_ms=1)
        sink.set_idle_handler(handler)
        feed = AudioFeed("a")
        await sink.play(feed)
        assert events == []
        feed.feed(b"\x00" * 10_000)
        feed.finish()
        await _wait_for(lambda: len(events) == 1)
        await asyncio.sleep(0.01)
        assert len(events) == 1
        assert events[0].resource is feed
        assert events[0].error is None
        assert sink.bytes_played == 10_000
        assert sink.resource is None

    _run(run())


def test_fake_sink_rejects_second_resource() -> None:
    async def run() -> None:
        sink = FakeSink()
        await sink.play(AudioFeed())
        with pytest.raises(SinkError):
            await sink.play(AudioFeed())
        await sink.stop()

    _run(run())


def test_fake_sink_stop_signals_idle_asynchronously() -> None:
    async def run() -> None:
        events, handler = _recorder()
        sink = FakeSink()
        sink.set_idle_handler(handler)
        feed = AudioFeed()
        await sink.play(feed)
        await sink.stop()
        assert events == []
        assert feed.closed
        await _wait_for(lambda: len(events) == 1)
        assert events[0].resource is feed

    _run(run())


def test_fake_sink_hold_pauses_draining() -> None:
    async def run() -> None:
        sink = FakeSink(tick_interval_ms=1)
        sink.hold()
        feed = AudioFeed()
        await sink.play(feed)
        feed.feed(b"x" * 100)
        await asyncio.sleep(0.02)
        assert sink.bytes_played == 0
        sink.hold(False)
        await _wait_for(lambda: sink.bytes_played == 100)
        await sink.stop()

    _run(run())


def test_file_sink_truncates_then_appends(tmp_path) -> None:
    out = tmp_path / "out" / "audio.pcm"
    out.parent.mkdir()
    out.write_bytes(b"stale")

    async def run() -> None:
        events, handler = _recorder()
        sink = FileSink(out, read_timeout_s=0.01)
        sink.set_idle_handler(handler)
        for payload in (b"first-", b"second"):
            feed = AudioFeed()
            await sink.play(feed)
            feed.feed(payload)
            feed.finish()
            count = len(events)
            await _wait_for(lambda count=count: len(events) == count + 1)
        assert all(event.error is None for event in events)
        assert sink.bytes_written == 12

    _run(run())
    assert out.read_bytes() == b"first-second"


def test_file_sink_reports_open_failure_as_sink_error(tmp_path) -> None:
    async def run() -> None:
        events, handler = _recorder()
        sink = FileSink(tmp_path / "missing-dir" / "audio.pcm")
        sink.set_idle_handler(handler)
        feed = AudioFeed()
        await sink.play(feed)
        await _wait_for(lambda: len(events) == 1)
        assert isinstance(events[0].error, SinkError)

    _run(run())


def test_file_sink_stop_closes_feed_and_signals_idle(tmp_path) -> None:
    async def run() -> None:
        events, handler = _recorder()
        sink = FileSink(tmp_path / "audio.pcm", read_timeout_s=0.01)
        sink.set_idle_handler(handler)
        feed = AudioFeed()
        await sink.play(feed)
        feed.feed(b"abc")
        await sink.stop()
        assert feed.closed
        await _wait_for(lambda: len(events) == 1)
        assert events[0].resource is feed
        await sink.stop()
        await asyncio.sleep(0.02)
        assert len(events) == 1

    _run(run())
