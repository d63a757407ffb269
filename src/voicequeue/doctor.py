"""Runtime diagnostics for the external extractor/transcoder and voice stack."""

from __future__ import annotations

import importlib
import shutil
import subprocess
from dataclasses import dataclass
from typing import Literal

from .runtime_config import PlaybackSettings

DoctorStatus = Literal["ok", "missing", "error"]


@dataclass(frozen=True)
class DoctorCheck:
    """One environment/tooling readiness check result."""

    name: str
    status: DoctorStatus
    required: bool
    detail: str
    hint: str | None = None


@dataclass(frozen=True)
class DoctorReport:
    """Collection of doctor checks and derived process exit contract."""

    checks: list[DoctorCheck]

    @property
    def exit_code(self) -> int:
        """Return non-zero when any required check failed or is missing."""
        for check in self.checks:
            if check.required and check.status != "ok":
                return 2
        return 0


def run_doctor(settings: PlaybackSettings | None = None) -> DoctorReport:
    """Run every diagnostic against the configured binaries."""
    settings = settings or PlaybackSettings()
    checks = [
        probe_extractor(settings.extractor_bin),
        probe_transcoder(settings.transcoder_bin),
        probe_discord(required=False),
    ]
    return DoctorReport(checks=checks)


def render_report(report: DoctorReport) -> str:
    """Render terminal-friendly diagnostics report text."""
    lines = ["voicequeue doctor", ""]
    for check in report.checks:
        state = _status_token(check.status)
        req = "required" if check.required else "optional"
        lines.append(f"{state} {check.name:<11} [{req}] {check.detail}")
        if check.hint:
            lines.append(f"      hint: {check.hint}")
    lines.append("")
    lines.append("Result: OK" if report.exit_code == 0 else "Result: FAIL")
    return "\n".join(lines)


def probe_extractor(binary: str = "yt-dlp") -> DoctorCheck:
    """Verify the extractor is on PATH and reports a version."""
    return _probe_binary(
        name="extractor",
        binary=binary,
        version_flag="--version",
        install_hint="Install yt-dlp (pip install yt-dlp) and verify PATH.",
    )


def probe_transcoder(binary: str = "ffmpeg") -> DoctorCheck:
    """Verify the transcoder is on PATH and reports a version."""
    return _probe_binary(
        name="transcoder",
        binary=binary,
        version_flag="-version",
        install_hint="Install ffmpeg and verify PATH.",
    )


def probe_discord(*, required: bool) -> DoctorCheck:
    """Verify discord.py importability and whether voice support is present."""
    try:
        module = importlib.import_module("discord")
    except Exception as exc:
        return DoctorCheck(
            name="discord.py",
            status="missing",
            required=required,
            detail=f"not importable ({exc.__class__.__name__})",
            hint="Install discord.py[voice] to stream into voice channels.",
        )
    version = getattr(module, "__version__", None)
    detail = f"importable ({version})" if version else "importable"
    try:
        importlib.import_module("nacl")
    except Exception:
        return DoctorCheck(
            name="discord.py",
            status="error",
            required=required,
            detail=f"{detail}; PyNaCl missing, voice disabled",
            hint="Install discord.py[voice].",
        )
    return DoctorCheck(name="discord.py", status="ok", required=required, detail=detail)


def _probe_binary(
    *, name: str, binary: str, version_flag: str, install_hint: str
) -> DoctorCheck:
    resolved = shutil.which(binary)
    if resolved is None:
        return DoctorCheck(
            name=name,
            status="missing",
            required=True,
            detail=f"{binary} not found on PATH",
            hint=install_hint,
        )
    try:
        proc = subprocess.run(
            [resolved, version_flag],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except Exception as exc:
        return DoctorCheck(
            name=name,
            status="error",
            required=True,
            detail=f"launch failed ({exc.__class__.__name__})",
            hint=install_hint,
        )
    if proc.returncode != 0:
        stderr_first = ""
        if proc.stderr:
            stderr_first = proc.stderr.strip().splitlines()[0]
        detail = f"{binary} {version_flag} failed (exit={proc.returncode})" + (
            f": {stderr_first}" if stderr_first else ""
        )
        return DoctorCheck(
            name=name, status="error", required=True, detail=detail, hint=install_hint
        )
    first_line = ""
    if proc.stdout:
        first_line = proc.stdout.strip().splitlines()[0]
    detail = first_line or f"binary found at {resolved}"
    return DoctorCheck(name=name, status="ok", required=True, detail=detail)


def _status_token(status: DoctorStatus) -> str:
    """Map doctor status to compact display token."""
    if status == "ok":
        return "[OK]"
    if status == "missing":
        return "[MISS]"
    return "[ERR]"
