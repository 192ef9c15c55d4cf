from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from storyreel.audio import decode_data_uri, sniff_audio_format, wrap_pcm_as_wav

from .assets import write_placeholder_image
from .composition import Composition, SceneSequence
from .utils import ensure_ffmpeg_exists, ensure_parent_dir, run_cmd

_logger = logging.getLogger(__name__)

AUDIO_SAMPLE_RATE = 48000
_VIDEO_CODEC_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-crf", "24", "-pix_fmt", "yuv420p"]


def _cover_filter(width: int, height: int) -> str:
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},"
        "setsar=1,"
        "format=yuv420p"
    )


def build_segment_cmd(image_path: str, frames: int, fps: int, width: int, height: int, output_path: Path) -> list[str]:
    """Still-image segment lasting exactly ``frames`` frames."""
    if frames <= 0:
        raise ValueError(f"Segment must last at least one frame, got {frames}.")
    return [
        "ffmpeg",
        "-y",
        "-loop",
        "1",
        "-framerate",
        str(fps),
        "-i",
        image_path,
        "-frames:v",
        str(frames),
        "-vf",
        _cover_filter(width, height),
        "-r",
        str(fps),
        *_VIDEO_CODEC_ARGS,
        str(output_path),
    ]


def build_concat_cmd(list_path: Path, output_path: Path, reencode: bool = False) -> list[str]:
    cmd = ["ffmpeg", "-y", "-f", "concat", "-safe", "0", "-i", str(list_path)]
    if reencode:
        cmd.extend([*_VIDEO_CODEC_ARGS, "-c:a", "aac", "-b:a", "192k"])
    else:
        cmd.extend(["-c", "copy"])
    cmd.append(str(output_path))
    return cmd


def build_scene_mux_cmd(
    video_path: Path,
    audio_path: str | None,
    frames: int,
    fps: int,
    output_path: Path,
    volume: float = 1.0,
) -> list[str]:
    """Mux a scene's video with its narration, padded or trimmed to the scene length.

    Scenes without narration get a silent track so every scene clip has the
    same stream layout for the final concat.
    """
    duration = frames / float(fps)
    cmd = ["ffmpeg", "-y", "-i", str(video_path)]
    if audio_path:
        cmd.extend(["-i", audio_path])
        audio_filter = f"volume={volume},apad,atrim=0:{duration:.6f}"
    else:
        cmd.extend(["-f", "lavfi", "-i", f"anullsrc=r={AUDIO_SAMPLE_RATE}:cl=stereo"])
        audio_filter = f"atrim=0:{duration:.6f}"
    cmd.extend(
        [
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-af",
            audio_filter,
            "-c:v",
            "copy",
            "-c:a",
            "aac",
            "-b:a",
            "192k",
            "-ar",
            str(AUDIO_SAMPLE_RATE),
            "-ac",
            "2",
            "-frames:v",
            str(frames),
            "-t",
            f"{duration:.6f}",
            str(output_path),
        ]
    )
    return cmd


def write_concat_list(paths: list[Path], list_path: Path) -> Path:
    lines = [f"file '{path.resolve().as_posix()}'" for path in paths]
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def _materialize_image(src: str, index: str, work_dir: Path, width: int, height: int) -> str:
    """Composition sources may be SVG data URIs; ffmpeg gets a PNG for those."""
    if src.startswith("data:"):
        return str(write_placeholder_image(work_dir / f"placeholder_{index}.png", size=(width, height)))
    return src


def _materialize_audio(src: str | None, index: int, work_dir: Path) -> str | None:
    if not src:
        return None
    if not src.startswith("data:"):
        return src
    decoded = decode_data_uri(src)
    if decoded is None:
        _logger.warning("Scene %d audio is a malformed data URI; rendering silence.", index)
        return None
    raw = decoded[1]
    audio_format = sniff_audio_format(raw)
    if audio_format is None:
        raw = wrap_pcm_as_wav(raw)
        audio_format = "wav"
    path = work_dir / f"scene_{index:03d}_audio.{audio_format}"
    path.write_bytes(raw)
    return str(path)


def _run(cmd: list[str], log_file: Path, ffmpeg_commands: list[list[str]], timeout_sec: float | None) -> None:
    ffmpeg_commands.append(cmd)
    run_cmd(cmd, log_path=log_file, timeout_sec=timeout_sec)


def _concat(
    paths: list[Path],
    output_path: Path,
    log_file: Path,
    ffmpeg_commands: list[list[str]],
    timeout_sec: float | None,
) -> None:
    list_path = write_concat_list(paths, output_path.with_suffix(".txt"))
    try:
        _run(build_concat_cmd(list_path, output_path), log_file, ffmpeg_commands, timeout_sec)
    except subprocess.CalledProcessError:
        _logger.info("Stream-copy concat failed for %s; re-encoding.", output_path.name)
        _run(build_concat_cmd(list_path, output_path, reencode=True), log_file, ffmpeg_commands, timeout_sec)


def _render_scene(
    scene: SceneSequence,
    composition: Composition,
    work_dir: Path,
    log_file: Path,
    ffmpeg_commands: list[list[str]],
    timeout_sec: float | None,
) -> Path:
    fps, width, height = composition.fps, composition.width, composition.height
    segment_paths: list[Path] = []
    for position, image in enumerate(scene.images):
        source = _materialize_image(image.src, f"{scene.index:03d}_{position:03d}", work_dir, width, height)
        segment_path = work_dir / f"scene_{scene.index:03d}_seg_{position:03d}.mp4"
        _run(
            build_segment_cmd(source, image.duration_in_frames, fps, width, height, segment_path),
            log_file,
            ffmpeg_commands,
            timeout_sec,
        )
        segment_paths.append(segment_path)

    video_path = work_dir / f"scene_{scene.index:03d}_video.mp4"
    if len(segment_paths) == 1:
        video_path = segment_paths[0]
    else:
        _concat(segment_paths, video_path, log_file, ffmpeg_commands, timeout_sec)

    audio_src = _materialize_audio(scene.audio.src if scene.audio else None, scene.index, work_dir)
    scene_path = work_dir / f"scene_{scene.index:03d}.mp4"
    _run(
        build_scene_mux_cmd(
            video_path,
            audio_src,
            scene.duration_in_frames,
            fps,
            scene_path,
            volume=scene.audio.volume if scene.audio else 1.0,
        ),
        log_file,
        ffmpeg_commands,
        timeout_sec,
    )
    return scene_path


def render_composition(
    composition: Composition,
    output_path: str | Path,
    workdir: str | Path | None = None,
    log_path: str | Path | None = None,
    command_timeout_sec: float | None = None,
) -> Path:
    """Render a composition to MP4 and write a JSON render report beside it."""
    ensure_ffmpeg_exists()
    if not composition.scenes:
        raise ValueError("Composition has no scenes to render.")

    output = ensure_parent_dir(output_path).resolve()
    log_file = Path(log_path).resolve() if log_path else output.with_name(f"{output.stem}_render.log")
    report_file = output.with_name(f"{output.stem}_render_report.json")
    ffmpeg_commands: list[list[str]] = []
    render_error: str | None = None
    started = datetime.now(timezone.utc)
    if workdir is not None:
        Path(workdir).mkdir(parents=True, exist_ok=True)

    try:
        with tempfile.TemporaryDirectory(prefix="storyreel_render_", dir=workdir) as tmp_dir:
            work_dir = Path(tmp_dir)
            scene_paths = [
                _render_scene(scene, composition, work_dir, log_file, ffmpeg_commands, command_timeout_sec)
                for scene in composition.scenes
            ]
            tmp_output = work_dir / "final.mp4"
            if len(scene_paths) == 1:
                scene_paths[0].replace(tmp_output)
            else:
                _concat(scene_paths, tmp_output, log_file, ffmpeg_commands, command_timeout_sec)
            shutil.move(str(tmp_output), str(output))
    except (OSError, RuntimeError, ValueError, subprocess.CalledProcessError) as exc:
        render_error = str(exc)
        _logger.error("Render failed after %d ffmpeg commands: %s", len(ffmpeg_commands), exc)
        raise
    finally:
        report = {
            "started_at": started.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "fps": composition.fps,
            "resolution": f"{composition.width}x{composition.height}",
            "duration_in_frames": composition.duration_in_frames,
            "scene_count": len(composition.scenes),
            "ffmpeg_commands": ffmpeg_commands,
            "log_path": str(log_file),
            "error": render_error,
        }
        report_file.write_text(json.dumps(report, indent=2), encoding="utf-8")

    _logger.info("Rendered %s (%d frames at %d fps).", output, composition.duration_in_frames, composition.fps)
    return output
