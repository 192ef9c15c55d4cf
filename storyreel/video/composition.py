"""Frame-exact composition of organised scenes.

A composition is a sequential list of scenes; each scene is a sequential list
of image segments plus at most one narration clip that starts at the scene's
first frame and lasts the whole scene.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field

from storyreel.models import NarrationChunk

from .scenes import (
    PLACEHOLDER_IMAGE,
    SECONDS_PER_IMAGE_FALLBACK,
    SceneCache,
    SceneData,
    organize_scenes,
    scene_frame_budgets,
    valid_chunks,
)

_logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_FALLBACK_SECONDS = 10

PLACEHOLDER_IMAGE_SRC = (
    "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iMTkyMCIgaGVpZ2h0PSIxMDgwIiB2aWV3Qm94PSIwIDAgMTkyMCAxMDgwIiBmaWxsPSJub25lIiB4bWxucz0iaHR0cDovL3d3dy53My5vcmcvMjAwMC9zdmciPgo8cmVjdCB3aWR0aD0iMTkyMCIgaGVpZ2h0PSIxMDgwIiBmaWxsPSIjMzMzMzMzIi8+Cjx0ZXh0IHg9Ijk2MCIgeT0iNTQwIiBmb250LWZhbWlseT0iQXJpYWwiIGZvbnQtc2l6ZT0iNjQiIGZpbGw9IndoaXRlIiB0ZXh0LWFuY2hvcj0ibWlkZGxlIiBkb21pbmFudC1iYXNlbGluZT0iY2VudGVyIj5TY2VuZSBJbWFnZTwvdGV4dD4KPHN2Zz4K"
)
ERROR_IMAGE_SRC = (
    "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iMTkyMCIgaGVpZ2h0PSIxMDgwIiB2aWV3Qm94PSIwIDAgMTkyMCAxMDgwIiBmaWxsPSJub25lIiB4bWxucz0iaHR0cDovL3d3dy53My5vcmcvMjAwMC9zdmciPgo8cmVjdCB3aWR0aD0iMTkyMCIgaGVpZ2h0PSIxMDgwIiBmaWxsPSIjRkY0NDQ0Ii8+Cjx0ZXh0IHg9Ijk2MCIgeT0iNTQwIiBmb250LWZhbWlseT0iQXJpYWwiIGZvbnQtc2l6ZT0iNjQiIGZpbGw9IndoaXRlIiB0ZXh0LWFuY2hvcj0ibWlkZGxlIiBkb21pbmFudC1iYXNlbGluZT0iY2VudGVyIj5JbWFnZSBFcnJvcjwvdGV4dD4KPHN2Zz4K"
)


class ImageSequence(BaseModel):
    src: str
    start_frame: int
    duration_in_frames: int


class AudioSequence(BaseModel):
    src: str
    start_frame: int = 0
    duration_in_frames: int
    volume: float = 1.0


class SceneSequence(BaseModel):
    index: int
    chunk_id: str
    start_frame: int
    duration_in_frames: int
    images: List[ImageSequence] = Field(default_factory=list)
    audio: Optional[AudioSequence] = None

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.duration_in_frames


class Composition(BaseModel):
    fps: int
    width: int
    height: int
    duration_in_frames: int
    scenes: List[SceneSequence] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return self.duration_in_frames / float(self.fps)


def resolve_image_src(src: str | None, assets_root: Path | None = None) -> str:
    """Map a scene image reference to something a renderer can load."""
    value = str(src or "").strip()
    if not value or value == PLACEHOLDER_IMAGE:
        return PLACEHOLDER_IMAGE_SRC
    if value.startswith(("data:", "http://", "https://")):
        return value
    path = Path(value)
    if assets_root is not None and not path.is_absolute():
        path = assets_root / path
    if not path.exists():
        _logger.warning("Image %s not found; using error placeholder.", path)
        return ERROR_IMAGE_SRC
    return str(path)


def resolve_audio_src(src: str | None, assets_root: Path | None = None) -> Optional[str]:
    value = str(src or "").strip()
    if not value:
        return None
    if value.startswith(("data:", "http://", "https://")):
        return value
    path = Path(value)
    if assets_root is not None and not path.is_absolute():
        path = assets_root / path
    return str(path)


def resolve_resolution(
    width: int | None = None,
    height: int | None = None,
    detected: tuple[int, int] | dict | None = None,
) -> tuple[int, int]:
    if width and height and width > 0 and height > 0:
        return int(width), int(height)
    if isinstance(detected, dict):
        detected = (detected.get("width"), detected.get("height"))
    if detected and all(isinstance(v, int) and v > 0 for v in detected):
        return int(detected[0]), int(detected[1])
    return DEFAULT_WIDTH, DEFAULT_HEIGHT


def calculate_duration(images: Sequence[Any], audio_chunks: Sequence[NarrationChunk], fps: int = 30) -> int:
    """Total frames: narration first, then 3s per image, then a fixed 10s."""
    valid = valid_chunks(audio_chunks or [])
    if valid:
        total = sum(scene_frame_budgets([float(c.duration or 0.0) for c in valid], fps))
        if total > 0:
            return total
    if images:
        return len(images) * SECONDS_PER_IMAGE_FALLBACK * fps
    return DEFAULT_FALLBACK_SECONDS * fps


def _empty_scene(fps: int) -> SceneData:
    frames = DEFAULT_FALLBACK_SECONDS * fps
    return SceneData(
        audio_chunk=NarrationChunk(id="default", text="", index=0, duration=float(DEFAULT_FALLBACK_SECONDS)),
        images=[PLACEHOLDER_IMAGE],
        duration_in_frames=frames,
        image_frame_durations=[frames],
    )


def compose(
    images: Sequence[Any],
    audio_chunks: Sequence[NarrationChunk],
    fps: int = 30,
    width: int | None = None,
    height: int | None = None,
    detected_dimensions: tuple[int, int] | dict | None = None,
    cache: SceneCache | None = None,
    assets_root: Path | None = None,
) -> Composition:
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps!r}")
    images = list(images or [])
    audio_chunks = list(audio_chunks or [])
    if not images and not valid_chunks(audio_chunks):
        scenes = [_empty_scene(fps)]
    else:
        scenes = organize_scenes(images, audio_chunks, fps=fps, cache=cache)

    out_width, out_height = resolve_resolution(width, height, detected_dimensions)
    sequences: list[SceneSequence] = []
    cursor = 0
    for index, scene in enumerate(scenes):
        image_cursor = 0
        image_sequences: list[ImageSequence] = []
        for src, frames in zip(scene.images, scene.image_frame_durations):
            image_sequences.append(
                ImageSequence(src=resolve_image_src(src, assets_root), start_frame=image_cursor, duration_in_frames=frames)
            )
            image_cursor += frames

        audio_src = resolve_audio_src(scene.audio_chunk.audio_url, assets_root)
        audio = AudioSequence(src=audio_src, duration_in_frames=scene.duration_in_frames) if audio_src else None

        sequences.append(
            SceneSequence(
                index=index,
                chunk_id=scene.audio_chunk.id,
                start_frame=cursor,
                duration_in_frames=scene.duration_in_frames,
                images=image_sequences,
                audio=audio,
            )
        )
        cursor += scene.duration_in_frames

    expected = calculate_duration(images, audio_chunks, fps)
    if cursor != expected:
        _logger.warning("Composed %d frames but expected %d.", cursor, expected)

    return Composition(fps=fps, width=out_width, height=out_height, duration_in_frames=cursor, scenes=sequences)
