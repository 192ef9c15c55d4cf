from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Sequence

from storyreel.models import GeneratedImage, NarrationChunk

_logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "placeholder"
SECONDS_PER_IMAGE_FALLBACK = 3


@dataclass(frozen=True)
class SceneImage:
    src: str
    chunk_id: str | None = None


@dataclass
class SceneData:
    audio_chunk: NarrationChunk
    images: list[str]
    duration_in_frames: int
    image_frame_durations: list[int] = field(default_factory=list)


def as_scene_image(item: Any) -> SceneImage:
    """Normalise a URL string, record dict, GeneratedImage or RenderImage."""
    if isinstance(item, SceneImage):
        return item
    if isinstance(item, str):
        return SceneImage(src=item)
    if isinstance(item, GeneratedImage):
        return SceneImage(src=item.image_url, chunk_id=item.chunk_id)
    if isinstance(item, dict):
        src = item.get("localPath") or item.get("local_path") or item.get("imageUrl") or item.get("image_url") or ""
        chunk_id = item.get("chunkId") or item.get("chunk_id")
        return SceneImage(src=str(src), chunk_id=str(chunk_id) if chunk_id else None)
    src = getattr(item, "local_path", None) or getattr(item, "image_url", None) or ""
    chunk_id = getattr(item, "chunk_id", None)
    return SceneImage(src=str(src), chunk_id=str(chunk_id) if chunk_id else None)


def _validate_fps(fps: int) -> int:
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps!r}")
    return int(fps)


def distribute_frames(total_frames: int, image_count: int) -> list[int]:
    """Split ``total_frames`` across ``image_count`` images as evenly as possible.

    The first ``total_frames % image_count`` images get one extra frame, so the
    result always sums to ``total_frames``.
    """
    if image_count <= 0:
        return []
    base = total_frames // image_count
    extra = total_frames - base * image_count
    return [base + (1 if idx < extra else 0) for idx in range(image_count)]


def scene_frame_budgets(durations: Sequence[float], fps: int) -> list[int]:
    """Frame budget per duration, taken from cumulative frame boundaries.

    Summing the budgets gives ``ceil(sum(durations) * fps)``, so per-scene
    rounding never gains or loses frames against the narration length.
    """
    fps = _validate_fps(fps)
    budgets: list[int] = []
    elapsed = 0.0
    previous_boundary = 0
    for duration in durations:
        elapsed += duration
        boundary = math.ceil(elapsed * fps)
        budgets.append(max(1, boundary - previous_boundary))
        previous_boundary = max(boundary, previous_boundary + 1)
    return budgets


def valid_chunks(audio_chunks: Iterable[NarrationChunk]) -> list[NarrationChunk]:
    return [chunk for chunk in audio_chunks if chunk.duration is not None and chunk.duration > 0]


def _fallback_scene(images: list[SceneImage], fps: int) -> SceneData:
    sources = [image.src for image in images] or [PLACEHOLDER_IMAGE]
    per_image = SECONDS_PER_IMAGE_FALLBACK * fps
    total = per_image * len(sources)
    return SceneData(
        audio_chunk=NarrationChunk(id="default", text="", index=0, duration=total / fps),
        images=sources,
        duration_in_frames=total,
        image_frame_durations=[per_image] * len(sources),
    )


class SceneCache:
    """Bounded LRU cache of organised scenes, keyed by a content fingerprint."""

    def __init__(self, max_entries: int = 32):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[Hashable, list[SceneData]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> list[SceneData] | None:
        scenes = self._entries.get(key)
        if scenes is not None:
            self._entries.move_to_end(key)
        return scenes

    def put(self, key: Hashable, scenes: list[SceneData]) -> None:
        self._entries[key] = scenes
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug("Scene cache evicted %r", evicted)

    def clear(self) -> None:
        self._entries.clear()

    @staticmethod
    def key_for(images: Sequence[SceneImage], audio_chunks: Sequence[NarrationChunk], fps: int) -> Hashable:
        return (
            fps,
            tuple((image.src, image.chunk_id) for image in images),
            tuple((chunk.id, chunk.duration, chunk.audio_url) for chunk in audio_chunks),
        )


def organize_scenes(
    images: Sequence[Any],
    audio_chunks: Sequence[NarrationChunk],
    fps: int = 30,
    cache: SceneCache | None = None,
) -> list[SceneData]:
    """Associate images with narration chunks and compute per-image frame durations."""
    fps = _validate_fps(fps)
    scene_images = [as_scene_image(item) for item in images]
    chunks = list(audio_chunks)

    cache_key = SceneCache.key_for(scene_images, chunks, fps) if cache is not None else None
    if cache is not None:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    scenes = _organize(scene_images, chunks, fps)
    if cache is not None:
        cache.put(cache_key, scenes)
    return scenes


def _organize(images: list[SceneImage], audio_chunks: list[NarrationChunk], fps: int) -> list[SceneData]:
    valid = valid_chunks(audio_chunks)
    if not valid:
        _logger.warning("No narration chunks with a duration; using a %ds-per-image fallback scene.", SECONDS_PER_IMAGE_FALLBACK)
        return [_fallback_scene(images, fps)]

    valid_ids = {chunk.id for chunk in valid}
    assigned: dict[str, list[str]] = {}
    unassigned: list[str] = []
    for image in images:
        if image.chunk_id and image.chunk_id in valid_ids:
            assigned.setdefault(image.chunk_id, []).append(image.src)
        else:
            unassigned.append(image.src)

    needy = [chunk.id for chunk in valid if not assigned.get(chunk.id)]
    pulled: dict[str, list[str]] = {}
    if needy and unassigned:
        per_chunk, extra = divmod(len(unassigned), len(needy))
        cursor = 0
        for position, chunk_id in enumerate(needy):
            take = per_chunk + (1 if position < extra else 0)
            pulled[chunk_id] = unassigned[cursor : cursor + take]
            cursor += take
    elif unassigned:
        _logger.debug("%d unassigned images left over; every chunk has its own images.", len(unassigned))

    budgets = scene_frame_budgets([float(chunk.duration or 0.0) for chunk in valid], fps)
    scenes: list[SceneData] = []
    for chunk, total_frames in zip(valid, budgets):
        chunk_images = assigned.get(chunk.id) or pulled.get(chunk.id) or [PLACEHOLDER_IMAGE]
        if len(chunk_images) > total_frames:
            _logger.warning(
                "Chunk %s has %d images but only %d frames; keeping the first %d.",
                chunk.id,
                len(chunk_images),
                total_frames,
                total_frames,
            )
            chunk_images = chunk_images[:total_frames]
        scenes.append(
            SceneData(
                audio_chunk=chunk,
                images=list(chunk_images),
                duration_in_frames=total_frames,
                image_frame_durations=distribute_frames(total_frames, len(chunk_images)),
            )
        )

    _logger.debug(
        "Organised %d scenes, %d frames total.",
        len(scenes),
        sum(scene.duration_in_frames for scene in scenes),
    )
    return scenes
