"""ffmpeg/ffprobe discovery and process execution."""
from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

_logger = logging.getLogger(__name__)

_EXE_ENV_VARS = {"ffmpeg": "FFMPEG_PATH", "ffprobe": "FFPROBE_PATH"}


class FFmpegNotFoundError(RuntimeError):
    pass


@dataclass
class CommandResult:
    ok: bool
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


def _resolve_exe(name: str) -> str:
    """Explicit env override, then PATH, then a sibling of the resolved ffmpeg."""
    override = os.environ.get(_EXE_ENV_VARS[name], "").strip()
    if override and Path(override).exists():
        return override
    found = shutil.which(name)
    if found:
        return found
    if name != "ffmpeg":
        sibling = Path(_resolve_exe("ffmpeg")).with_name(name)
        if sibling.exists():
            return str(sibling)
    raise FileNotFoundError(f"{name} executable not found. Install ffmpeg or set {_EXE_ENV_VARS[name]}.")


def resolve_ffmpeg_exe() -> str:
    return _resolve_exe("ffmpeg")


def resolve_ffprobe_exe() -> str:
    return _resolve_exe("ffprobe")


def ensure_ffmpeg_exists() -> None:
    try:
        subprocess.run([resolve_ffmpeg_exe(), "-version"], check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise FFmpegNotFoundError("FFmpeg is not installed or not on PATH.") from exc
    except subprocess.CalledProcessError as exc:
        raise FFmpegNotFoundError(f"FFmpeg is installed but failed to run (exit {exc.returncode}).") from exc


def run_ffmpeg(cmd: list[str], timeout_sec: float | None = None, cwd: str | Path | None = None) -> CommandResult:
    """Run an ffmpeg/ffprobe command; process failures come back as a result, not an exception."""
    if not cmd or not cmd[0]:
        raise ValueError(f"Invalid ffmpeg/ffprobe command: {cmd!r}")
    argv = list(cmd)
    try:
        if argv[0] in _EXE_ENV_VARS:
            argv[0] = _resolve_exe(argv[0])
        completed = subprocess.run(
            argv,
            timeout=timeout_sec,
            check=False,
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        return CommandResult(ok=False, returncode=None, stdout=str(exc.stdout or ""), stderr=str(exc.stderr or ""), timed_out=True)
    except FileNotFoundError as exc:
        return CommandResult(ok=False, returncode=None, stderr=str(exc))
    return CommandResult(
        ok=completed.returncode == 0,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def _append_log(log_path: Path, cmd: list[str], result: CommandResult, timeout_sec: float | None) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write("$ " + json.dumps(cmd, ensure_ascii=False) + "\n")
        if result.stderr:
            handle.write(result.stderr.rstrip("\n") + "\n")
        if result.timed_out:
            handle.write(f"[timed out after {timeout_sec}s]\n")
        handle.write(f"[exit {result.returncode}]\n")


def run_cmd(
    cmd: list[str],
    log_path: str | Path | None = None,
    check: bool = True,
    timeout_sec: float | None = None,
    cwd: str | Path | None = None,
) -> CommandResult:
    result = run_ffmpeg(cmd, timeout_sec=timeout_sec, cwd=cwd)
    if log_path:
        _append_log(Path(log_path), cmd, result, timeout_sec)
    if check and not result.ok:
        if result.timed_out:
            raise RuntimeError(f"Command timed out after {timeout_sec}s: {cmd[0]}")
        raise subprocess.CalledProcessError(
            returncode=result.returncode if result.returncode is not None else 1,
            cmd=cmd,
            output=result.stdout,
            stderr=result.stderr,
        )
    return result


def get_media_duration(path: str | Path) -> float:
    """Container duration in seconds from ffprobe, or 0.0 when unknown."""
    media_path = Path(path)
    if not media_path.exists():
        return 0.0
    result = run_ffmpeg(["ffprobe", "-v", "error", "-show_entries", "format=duration", "-of", "json", str(media_path)])
    if not result.ok:
        _logger.warning("ffprobe could not read %s: %s", media_path, result.stderr.strip()[:200])
        return 0.0
    try:
        return float(json.loads(result.stdout)["format"]["duration"])
    except (KeyError, TypeError, ValueError):
        return 0.0


def ensure_parent_dir(path: str | Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target
