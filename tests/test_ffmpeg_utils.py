import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from storyreel.video import utils


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    monkeypatch.delenv("FFMPEG_PATH", raising=False)
    monkeypatch.delenv("FFPROBE_PATH", raising=False)
    monkeypatch.setattr(utils.shutil, "which", lambda name: f"/opt/bin/{name}")


def test_run_ffmpeg_resolves_executable(monkeypatch, fake_ffmpeg) -> None:
    seen = {}

    def fake_run(argv, **kwargs):
        seen["argv"] = argv
        return SimpleNamespace(returncode=0, stdout="ok", stderr="")

    monkeypatch.setattr(utils.subprocess, "run", fake_run)

    result = utils.run_ffmpeg(["ffmpeg", "-version"])

    assert result.ok
    assert seen["argv"][0] == "/opt/bin/ffmpeg"


def test_run_ffmpeg_reports_timeout(monkeypatch, fake_ffmpeg) -> None:
    def fake_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs.get("timeout"))

    monkeypatch.setattr(utils.subprocess, "run", fake_run)

    result = utils.run_ffmpeg(["ffmpeg", "-i", "x"], timeout_sec=1)

    assert result.ok is False
    assert result.timed_out is True


def test_run_cmd_logs_and_raises_on_failure(monkeypatch, fake_ffmpeg, tmp_path: Path) -> None:
    monkeypatch.setattr(utils.subprocess, "run", lambda argv, **kwargs: SimpleNamespace(returncode=1, stdout="", stderr="Invalid data"))
    log_path = tmp_path / "logs" / "render.log"

    with pytest.raises(subprocess.CalledProcessError):
        utils.run_cmd(["ffmpeg", "-i", "broken.png", "out.mp4"], log_path=log_path)

    log = log_path.read_text(encoding="utf-8")
    assert "broken.png" in log
    assert "Invalid data" in log
    assert "[exit 1]" in log


def test_run_cmd_without_check_returns_result(monkeypatch, fake_ffmpeg) -> None:
    monkeypatch.setattr(utils.subprocess, "run", lambda argv, **kwargs: SimpleNamespace(returncode=1, stdout="", stderr="nope"))

    result = utils.run_cmd(["ffmpeg"], check=False)

    assert result.ok is False
    assert result.returncode == 1


def test_get_media_duration_parses_ffprobe_json(monkeypatch, fake_ffmpeg, tmp_path: Path) -> None:
    media = tmp_path / "voice.mp3"
    media.write_bytes(b"ID3")
    monkeypatch.setattr(
        utils.subprocess,
        "run",
        lambda argv, **kwargs: SimpleNamespace(returncode=0, stdout='{"format": {"duration": "3.25"}}', stderr=""),
    )

    assert utils.get_media_duration(media) == 3.25
    assert utils.get_media_duration(tmp_path / "missing.mp3") == 0.0


def test_ensure_ffmpeg_exists_raises_when_missing(monkeypatch) -> None:
    monkeypatch.delenv("FFMPEG_PATH", raising=False)
    monkeypatch.setattr(utils.shutil, "which", lambda name: None)

    with pytest.raises(utils.FFmpegNotFoundError):
        utils.ensure_ffmpeg_exists()
