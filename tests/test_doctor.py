"""Tests for environment diagnostics probes and report behavior."""

from __future__ import annotations

import types

import voicequeue.doctor as doctor_module
from voicequeue.runtime_config import PlaybackSettings


def test_run_doctor_passes_when_binaries_ok_and_discord_missing(monkeypatch) -> None:
    monkeypatch.setattr(
        doctor_module, "probe_extractor", lambda _bin: _check("extractor", "ok", True)
    )
    monkeypatch.setattr(
        doctor_module, "probe_transcoder", lambda _bin: _check("transcoder", "ok", True)
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_discord",
        lambda **kwargs: _check("discord.py", "missing", kwargs["required"]),
    )

    report = doctor_module.run_doctor()
    assert report.exit_code == 0


def test_run_doctor_fails_when_transcoder_missing(monkeypatch) -> None:
    seen: list[str] = []

    def fake_transcoder(binary: str) -> doctor_module.DoctorCheck:
        seen.append(binary)
        return _check("transcoder", "missing", True)

    monkeypatch.setattr(
        doctor_module, "probe_extractor", lambda _bin: _check("extractor", "ok", True)
    )
    monkeypatch.setattr(doctor_module, "probe_transcoder", fake_transcoder)
    monkeypatch.setattr(
        doctor_module,
        "probe_discord",
        lambda **kwargs: _check("discord.py", "ok", kwargs["required"]),
    )

    report = doctor_module.run_doctor(PlaybackSettings(transcoder_bin="ffmpeg7"))
    assert report.exit_code == 2
    assert seen == ["ffmpeg7"]


def test_probe_extractor_missing(monkeypatch) -> None:
    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: None)
    check = doctor_module.probe_extractor("yt-dlp")
    assert check.status == "missing"
    assert check.required is True
    assert check.hint is not None and "yt-dlp" in check.hint


def test_probe_transcoder_nonzero_version_exit_is_error(monkeypatch) -> None:
    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        doctor_module.subprocess,
        "run",
        lambda *args, **kwargs: types.SimpleNamespace(
            returncode=1,
            stdout="",
            stderr="ffmpeg: broken install",
        ),
    )
    check = doctor_module.probe_transcoder("ffmpeg")
    assert check.status == "error"
    assert "exit=1" in check.detail
    assert "broken install" in check.detail


def test_probe_extractor_reports_version_line(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return types.SimpleNamespace(returncode=0, stdout="2024.08.06\n", stderr="")

    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: "/bin/yt-dlp")
    monkeypatch.setattr(doctor_module.subprocess, "run", fake_run)
    check = doctor_module.probe_extractor("yt-dlp")
    assert check.status == "ok"
    assert check.detail == "2024.08.06"
    assert calls == [["/bin/yt-dlp", "--version"]]


def test_probe_transcoder_launch_failure_is_error(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise OSError("exec format error")

    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: "/bin/ffmpeg")
    monkeypatch.setattr(doctor_module.subprocess, "run", boom)
    check = doctor_module.probe_transcoder("ffmpeg")
    assert check.status == "error"
    assert "OSError" in check.detail


def test_probe_discord_missing_is_optional(monkeypatch) -> None:
    def fail_import(name: str):
        raise ImportError(name)

    monkeypatch.setattr(doctor_module.importlib, "import_module", fail_import)
    check = doctor_module.probe_discord(required=False)
    assert check.status == "missing"
    assert check.required is False


def test_probe_discord_ok(monkeypatch) -> None:
    fake = types.SimpleNamespace(__version__="2.4.0")
    monkeypatch.setattr(doctor_module.importlib, "import_module", lambda name: fake)
    check = doctor_module.probe_discord(required=False)
    assert check.status == "ok"
    assert "2.4.0" in check.detail


def test_probe_discord_without_nacl_is_error(monkeypatch) -> None:
    fake = types.SimpleNamespace(__version__="2.4.0")

    def import_module(name: str):
        if name == "nacl":
            raise ImportError(name)
        return fake

    monkeypatch.setattr(doctor_module.importlib, "import_module", import_module)
    check = doctor_module.probe_discord(required=False)
    assert check.status == "error"
    assert "PyNaCl" in check.detail


def test_render_report_includes_result_and_hint() -> None:
    report = doctor_module.DoctorReport(
        checks=[
            _check("extractor", "ok", True),
            doctor_module.DoctorCheck(
                name="transcoder",
                status="missing",
                required=True,
                detail="ffmpeg not found on PATH",
                hint="Install ffmpeg and verify PATH.",
            ),
        ],
    )
    text = doctor_module.render_report(report)
    assert "[OK] extractor" in text
    assert "[MISS] transcoder" in text
    assert "Result: FAIL" in text
    assert "hint: Install ffmpeg" in text


def _check(name: str, status: str, required: bool) -> doctor_module.DoctorCheck:
    return doctor_module.DoctorCheck(
        name=name,
        status=status,  # type: ignore[arg-type]
        required=required,
        detail="detail",
    )
