"""Nox sessions for voicequeue quality gates."""

from __future__ import annotations

import nox

nox.options.sessions = ["lint", "typecheck", "tests"]

SOURCES = ("src", "tests", "noxfile.py")


@nox.session
def lint(session: nox.Session) -> None:
    """Check lint and formatting without touching files."""
    session.install("ruff")
    session.run("ruff", "check", *SOURCES)
    session.run("ruff", "format", "--check", *SOURCES)


@nox.session(name="lint-fix")
def lint_fix(session: nox.Session) -> None:
    session.install("ruff")
    session.run("ruff", "check", "--fix", *SOURCES)
    session.run("ruff", "format", *SOURCES)


@nox.session
def typecheck(session: nox.Session) -> None:
    """mypy over the package with discord.py and python-dotenv installed."""
    session.install("mypy")
    session.install("-e", ".")
    session.run("mypy", "src/voicequeue")


@nox.session
def tests(session: nox.Session) -> None:
    """Run the pytest suite; extra args are forwarded (e.g. -k engine)."""
    session.install("-e", ".[test]")
    session.run("pytest", *session.posargs)


@nox.session
def doctor(session: nox.Session) -> None:
    """Report whether yt-dlp and ffmpeg are usable from a fresh install."""
    session.install("-e", ".")
    session.run("voicequeue", "doctor", success_codes=[0, 2])


@nox.session(python=False)
def local(session: nox.Session) -> None:
    """Run the toolchain from the current environment (no virtualenv)."""
    session.run("ruff", "check", "--fix", *SOURCES, external=True)
    session.run("ruff", "format", *SOURCES, external=True)
    session.run("mypy", "src/voicequeue", external=True)
    session.run("pytest", external=True)
