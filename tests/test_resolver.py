"""Tests for extractor metadata resolution and validation."""

from __future__ import annotations

import asyncio
import json
import os
import stat
import sys
from pathlib import Path

import pytest

from voicequeue.runtime_config import PlaybackSettings
from voicequeue.services.errors import ResolutionError
from voicequeue.services.resolver import (
    TrackResolver,
    build_metadata_args,
    parse_track_metadata,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="needs shebang scripts")


def _run(coro):
    return asyncio.run(coro)


def _fake_extractor(tmp_path: Path, body: str) -> str:
    """Write an executable stand-in for yt-dlp and return its path."""
    script = tmp_path / "fake-yt-dlp"
    script.write_text(f"#!{sys.executable}\nimport sys, json, time\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


def test_metadata_args_request_single_json_dump() -> None:
    args = build_metadata_args("ytsearch:lofi", PlaybackSettings())
    assert args[:3] == ["yt-dlp", "--dump-json", "--skip-download"]
    assert "--no-playlist" in args
    assert args[-1] == "ytsearch:lofi"


def test_parse_uses_webpage_url_and_duration_string() -> None:
    track = parse_track_metadata(
        {
            "title": "  Song  ",
            "duration": 215,
            "duration_string": "3:35",
            "webpage_url": "https://example.test/watch?v=1",
            "original_url": "https://example.test/short",
        },
        "ytsearch:song",
    )
    assert track.title == "Song"
    assert track.duration_s == 215.0
    assert track.duration_display == "3:35"
    assert track.locator == "https://example.test/watch?v=1"


def test_parse_falls_back_to_original_url_then_locator() -> None:
    track = parse_track_metadata(
        {"title": "A", "duration": 1.5, "original_url": "https://o.test/a"}, "loc"
    )
    assert track.locator == "https://o.test/a"
    track = parse_track_metadata({"title": "A", "duration": 0}, "loc")
    assert track.locator == "loc"


def test_parse_derives_display_when_duration_string_missing() -> None:
    track = parse_track_metadata({"title": "A", "duration": 3725}, "loc")
    assert track.duration_display == "1:02:05"


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"duration": 10},
        {"title": "", "duration": 10},
        {"title": "A"},
        {"title": "A", "duration": None},
        {"title": "A", "duration": True},
        {"title": "A", "duration": "10"},
        {"title": "A", "duration": -1},
        {"title": "A", "duration": float("inf")},
        {"title": "A", "duration": 10, "webpage_url": 5},
        {"title": "A", "duration": 10, "duration_string": 10},
    ],
)
def test_parse_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(ResolutionError) as excinfo:
        parse_track_metadata(payload, "loc")
    assert excinfo.value.locator == "loc"


def test_resolve_rejects_empty_locator() -> None:
    with pytest.raises(ResolutionError):
        _run(TrackResolver().resolve("   "))


def test_resolve_wraps_unspawnable_locator_as_resolution_error() -> None:
    with pytest.raises(ResolutionError, match="Failed to start extractor"):
        _run(TrackResolver().resolve("https://example.test/\x00a"))


@posix_only
def test_resolve_runs_extractor_and_builds_track(tmp_path) -> None:
    payload = json.dumps(
        {"title": "Clip", "duration": 62, "webpage_url": "https://example.test/c"}
    )
    body = (
        "assert sys.argv[1] == '--dump-json'\n"
        f"print(json.dumps(json.loads({payload!r})))"
    )
    settings = PlaybackSettings(extractor_bin=_fake_extractor(tmp_path, body))
    track = _run(TrackResolver(settings).resolve("https://example.test/c?x=1"))
    assert track.title == "Clip"
    assert track.duration_display == "1:02"
    assert track.locator == "https://example.test/c"


@posix_only
def test_resolve_nonzero_exit_includes_stderr(tmp_path) -> None:
    body = "sys.stderr.write('ERROR: Video unavailable'); sys.exit(1)"
    settings = PlaybackSettings(extractor_bin=_fake_extractor(tmp_path, body))
    with pytest.raises(ResolutionError) as excinfo:
        _run(TrackResolver(settings).resolve("https://example.test/gone"))
    assert "Video unavailable" in str(excinfo.value)
    assert excinfo.value.locator == "https://example.test/gone"


@posix_only
def test_resolve_rejects_multiple_json_lines(tmp_path) -> None:
    body = "print('{\"title\": \"a\", \"duration\": 1}')\n" * 2
    settings = PlaybackSettings(extractor_bin=_fake_extractor(tmp_path, body))
    with pytest.raises(ResolutionError, match="one JSON line"):
        _run(TrackResolver(settings).resolve("playlist"))


@posix_only
def test_resolve_rejects_invalid_json(tmp_path) -> None:
    settings = PlaybackSettings(
        extractor_bin=_fake_extractor(tmp_path, "print('not json')")
    )
    with pytest.raises(ResolutionError, match="not valid JSON"):
        _run(TrackResolver(settings).resolve("x"))


@posix_only
def test_resolve_times_out_and_kills_extractor(tmp_path) -> None:
    settings = PlaybackSettings(
        extractor_bin=_fake_extractor(tmp_path, "time.sleep(30)"),
        resolve_timeout_s=0.5,
    )
    with pytest.raises(ResolutionError, match="timed out"):
        _run(TrackResolver(settings).resolve("slow"))


def test_resolve_missing_extractor_raises(tmp_path) -> None:
    settings = PlaybackSettings(extractor_bin=str(tmp_path / "missing-extractor"))
    with pytest.raises(ResolutionError, match="Failed to start extractor"):
        _run(TrackResolver(settings).resolve("x"))
