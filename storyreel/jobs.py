"""Render-job bookkeeping and the story-to-MP4 pipeline.

Jobs live in a single JSON file keyed by job id so that a Streamlit rerun or a
CLI invocation can poll a render started elsewhere.
"""
from __future__ import annotations

import json
import logging
import re
import shutil
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storyreel.config import Settings, load_settings
from storyreel.models import ActionResult, Story
from storyreel.video.assets import download_assets_for_rendering
from storyreel.video.composition import compose
from storyreel.video.ffmpeg_render import render_composition
from storyreel.video.scenes import SceneCache

_logger = logging.getLogger(__name__)

# Overrides the settings-derived location when set.
JOBS_FILE: Path | None = None
JOBS_FILENAME = "video-jobs.json"
SMALL_IMAGE_FPS = 12

JobStatus = Literal["pending", "processing", "completed", "error"]

_jobs_lock = threading.RLock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RenderJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: JobStatus = "pending"
    progress: int = 0
    story_id: str = Field(alias="storyId")
    story_title: str = Field(default="", alias="storyTitle")
    created_at: str = Field(default_factory=lambda: _now().isoformat(), alias="createdAt")
    updated_at: str = Field(default_factory=lambda: _now().isoformat(), alias="updatedAt")
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    error: Optional[str] = None
    estimated_time_remaining: Optional[float] = Field(default=None, alias="estimatedTimeRemaining")

    @property
    def finished(self) -> bool:
        return self.status in {"completed", "error"}


def jobs_file() -> Path:
    return JOBS_FILE if JOBS_FILE is not None else load_settings().data_dir / JOBS_FILENAME


def _load_jobs() -> dict[str, RenderJob]:
    path = jobs_file()
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return {job_id: RenderJob.model_validate(payload) for job_id, payload in raw.items()}
    except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as exc:
        _logger.error("Could not read jobs file %s: %s", path, exc)
        return {}


def _save_jobs(jobs: dict[str, RenderJob]) -> None:
    path = jobs_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {job_id: job.model_dump(by_alias=True, exclude_none=True) for job_id, job in jobs.items()}
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp_path.replace(path)


def create_job(story_id: str, story_title: str = "") -> RenderJob:
    job = RenderJob(
        id=f"video_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}",
        story_id=story_id,
        story_title=story_title,
    )
    with _jobs_lock:
        jobs = _load_jobs()
        jobs[job.id] = job
        _save_jobs(jobs)
    _logger.info("Created video job %s for story %r", job.id, story_title)
    return job


def update_job(job_id: str, **updates) -> Optional[RenderJob]:
    """Apply ``updates`` (snake_case field names) and bump ``updated_at``."""
    with _jobs_lock:
        jobs = _load_jobs()
        job = jobs.get(job_id)
        if job is None:
            _logger.error("Job %s not found", job_id)
            return None
        job = RenderJob.model_validate({**job.model_dump(), **updates, "updated_at": _now().isoformat()})
        jobs[job_id] = job
        _save_jobs(jobs)
    _logger.debug("Updated job %s: %s", job_id, updates)
    return job


def get_job(job_id: str) -> Optional[RenderJob]:
    with _jobs_lock:
        return _load_jobs().get(job_id)


def jobs_for_story(story_id: str) -> list[RenderJob]:
    with _jobs_lock:
        return [job for job in _load_jobs().values() if job.story_id == story_id]


def cleanup_old_jobs(max_age_hours: float = 24) -> int:
    """Drop finished jobs created more than ``max_age_hours`` ago; returns the count removed."""
    cutoff = _now() - timedelta(hours=max_age_hours)
    with _jobs_lock:
        jobs = _load_jobs()
        stale = [
            job_id
            for job_id, job in jobs.items()
            if job.finished and datetime.fromisoformat(job.created_at) < cutoff
        ]
        for job_id in stale:
            del jobs[job_id]
        if stale:
            _save_jobs(jobs)
            _logger.info("Cleaned up %d old video jobs", len(stale))
    return len(stale)


def latest_completed_job(story_id: str) -> Optional[RenderJob]:
    completed = [job for job in jobs_for_story(story_id) if job.status == "completed" and job.download_url]
    completed.sort(key=lambda job: datetime.fromisoformat(job.created_at), reverse=True)
    return completed[0] if completed else None


def choose_render_fps(default_fps: int, image_dimensions: tuple[int, int] | None) -> int:
    """Very small source images render at a lower frame rate."""
    if image_dimensions and image_dimensions[0] <= 640 and image_dimensions[1] <= 360:
        return min(default_fps, SMALL_IMAGE_FPS)
    return default_fps


def output_filename(title: str) -> str:
    stem = re.sub(r"[^a-zA-Z0-9]", "_", title or "").strip("_") or "story"
    return f"{stem}.mp4"


def render_story(
    story: Story,
    job_id: str,
    language: str = "en",
    output_dir: str | Path | None = None,
    settings: Settings | None = None,
    cache: SceneCache | None = None,
) -> ActionResult:
    """Download a story's assets, compose its scenes and render an MP4.

    Progress, the output path or the error are recorded on ``job_id``.
    Data on success is the output path.
    """
    settings = settings or load_settings()
    try:
        chunks = story.chunks_for_language(language)
    except ValueError as exc:
        update_job(job_id, status="error", error=str(exc))
        return ActionResult.fail(str(exc))

    renders_dir = Path(output_dir) if output_dir else settings.data_dir / "renders" / (story.id or "unsaved")
    workdir = renders_dir / f"work_{job_id}"
    try:
        update_job(job_id, status="processing", progress=10)
        assets = download_assets_for_rendering(story.generated_images, chunks, workdir)
        update_job(job_id, progress=30)

        fps = choose_render_fps(settings.fps, assets.image_dimensions)
        composition = compose(
            assets.local_images,
            assets.local_audio_chunks,
            fps=fps,
            detected_dimensions=assets.image_dimensions,
            cache=cache,
        )
        update_job(job_id, progress=40)

        output_path = render_composition(
            composition,
            renders_dir / output_filename(story.title),
            workdir=workdir,
            command_timeout_sec=settings.render_timeout_sec,
        )
    except Exception as exc:  # noqa: BLE001
        _logger.exception("Rendering failed for job %s", job_id)
        update_job(job_id, status="error", error=str(exc))
        return ActionResult.fail(str(exc))
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

    update_job(job_id, status="completed", progress=100, download_url=str(output_path))
    _logger.info("Job %s completed: %s", job_id, output_path)
    return ActionResult.ok(str(output_path))
