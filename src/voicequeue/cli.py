"""Command-line interface for voicequeue."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from . import __version__
from .doctor import render_report, run_doctor
from .events import EngineStateChanged, SessionEnded, SessionStarted
from .logging_utils import setup_logging
from .paths import env_file_path, log_dir
from .runtime_config import PlaybackSettings, load_settings, resolve_log_level
from .services.errors import (
    QueueFullError,
    ResolutionError,
    SinkError,
    format_user_error,
)
from .services.file_sink import FileSink
from .services.playback_engine import PlaybackEngine
from .services.resolver import TrackResolver
from .utils.time_format import format_total_duration
from .version import build_help_epilog

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicequeue",
        description="Queue web media and stream it as PCM audio.",
        epilog=build_help_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True
    commands.add_parser("doctor", help="Check extractor/transcoder availability.")
    resolve = commands.add_parser("resolve", help="Print metadata for a locator.")
    resolve.add_argument("locator", help="Media URL or extractor search term.")
    play = commands.add_parser(
        "play", help="Queue locators and stream them into a PCM file."
    )
    play.add_argument("locators", nargs="+", metavar="LOCATOR")
    play.add_argument(
        "--output",
        "-o",
        required=True,
        help="Raw s16le PCM output file (48 kHz stereo).",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        _load_env()
        level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        settings = load_settings()
        logger.info("Starting voicequeue %s", args.command)
        if args.command == "doctor":
            report = run_doctor(settings)
            print(render_report(report))
            return report.exit_code
        if args.command == "resolve":
            return asyncio.run(_resolve(args.locator, settings))
        return asyncio.run(_play(args.locators, Path(args.output), settings))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Fatal startup error: %s", exc)
        print(
            "Startup failed. Run `voicequeue doctor` and re-run with --verbose.",
            file=sys.stderr,
        )
        return 1


def _load_env() -> None:
    """Layer `.env` files under the real environment (existing vars win)."""
    local_env = find_dotenv(usecwd=True)
    if local_env:
        load_dotenv(local_env, override=False)
    user_env = env_file_path()
    if user_env.is_file():
        load_dotenv(user_env, override=False)


async def _resolve(locator: str, settings: PlaybackSettings) -> int:
    try:
        track = await TrackResolver(settings).resolve(locator)
    except ResolutionError as exc:
        print(_resolution_message(exc), file=sys.stderr)
        return 1
    print(track.title)
    print(f"Duration: {track.duration_display}")
    print(f"URL: {track.locator}")
    return 0


async def _play(
    locators: Sequence[str], output: Path, settings: PlaybackSettings
) -> int:
    engine = PlaybackEngine(sink=FileSink(output), settings=settings)
    changed = asyncio.Event()
    failed: list[SessionEnded] = []

    async def on_event(event: object) -> None:
        if isinstance(event, SessionStarted) and event.reached_sink:
            print(f"Now playing: {event.track.describe()}")
        elif isinstance(event, SessionEnded):
            print(f"Finished ({event.outcome}): {event.track.title}")
            if event.failed:
                failed.append(event)
                print(_session_message(event), file=sys.stderr)
        elif isinstance(event, EngineStateChanged):
            changed.set()

    engine.subscribe(on_event)
    await engine.start()
    try:
        queued = 0
        for locator in locators:
            try:
                result = await engine.enqueue_locator(locator)
            except ResolutionError as exc:
                print(_resolution_message(exc), file=sys.stderr)
                continue
            except QueueFullError as exc:
                print(f"Skipping {locator}: {exc}", file=sys.stderr)
                continue
            queued += 1
            if result.position == 0:
                print(f"Starting: {result.track.describe()}")
            else:
                print(
                    f"Queued #{result.position}: {result.track.describe()} "
                    f"(total {format_total_duration(engine.queue_duration_s())})"
                )
        if queued == 0:
            print("Nothing could be queued.", file=sys.stderr)
            return 1
        while engine.current_track() is not None or engine.queue_snapshot():
            await changed.wait()
            changed.clear()
        await engine.wait_for_notifications()
    finally:
        await engine.shutdown()
    print(f"Wrote {output}")
    return 1 if failed else 0


def _resolution_message(exc: ResolutionError) -> str:
    return format_user_error(
        what_failed=f"Could not resolve {exc.locator!r}.",
        likely_cause="The extractor rejected the locator or is not installed.",
        next_step="Check the URL and run `voicequeue doctor`.",
        detail=str(exc),
    )


def _session_message(event: SessionEnded) -> str:
    if isinstance(event.error, SinkError):
        cause = "The output could not be written."
    else:
        cause = "The extractor or transcoder failed mid-stream."
    return format_user_error(
        what_failed=f"Playback of {event.track.title!r} failed.",
        likely_cause=cause,
        next_step="Re-run with --verbose and inspect the log file.",
        detail=str(event.error) if event.error is not None else None,
    )


if __name__ == "__main__":
    raise SystemExit(main())
