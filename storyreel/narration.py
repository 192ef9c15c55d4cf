from __future__ import annotations

import logging
import math
import re
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from storyreel.audio import estimate_duration_from_data_uri
from storyreel.models import ActionResult, GeneratedImage, NarrationChunk

_logger = logging.getLogger(__name__)

WORDS_PER_SECOND = 2.6

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?](?:\s|$)")

T = TypeVar("T")


def split_script_into_chunks(script: str) -> list[str]:
    if not script or not isinstance(script, str):
        return []
    normalized = script.replace("\r\n", "\n")
    sentences = [match.group(0).strip() for match in _SENTENCE_RE.finditer(normalized)]
    chunks = [sentence for sentence in sentences if sentence]
    if not chunks:
        return [p for p in re.split(r"\n\s*\n", normalized) if p.strip()]
    return chunks


def split_script_with_target_chunks(script: str, target_chunks: int) -> list[str]:
    if not script or target_chunks <= 0:
        return []
    sentences = split_script_into_chunks(script)
    if len(sentences) <= target_chunks:
        return sentences
    per_chunk = math.ceil(len(sentences) / target_chunks)
    return [" ".join(sentences[i : i + per_chunk]) for i in range(0, len(sentences), per_chunk)]


def prepare_script_chunks(script: str, target_chunks: int | None = None) -> list[NarrationChunk]:
    texts = split_script_with_target_chunks(script, target_chunks) if target_chunks else split_script_into_chunks(script)
    return [NarrationChunk(id=str(uuid.uuid4()), text=text, index=idx) for idx, text in enumerate(texts)]


def estimate_chunk_duration(text: str) -> float:
    if not text:
        return 0.0
    word_count = len(text.split())
    return max(1.0, word_count / WORDS_PER_SECOND)


def total_narration_duration(chunks: Iterable[NarrationChunk] | None) -> float:
    if not chunks:
        return 0.0
    return sum((chunk.duration or estimate_chunk_duration(chunk.text)) for chunk in chunks)


@dataclass
class BatchProgress:
    index: int
    item: Any
    success: bool
    result: Any = None
    error: Optional[str] = None


def run_sequential(
    items: Iterable[T],
    worker: Callable[[T], ActionResult],
    cancel_event: threading.Event | None = None,
) -> Iterator[BatchProgress]:
    """Run ``worker`` over ``items`` one at a time, yielding progress after each.

    A failed item is reported and the loop moves on. Setting ``cancel_event``
    stops the loop before the next item starts; an in-flight call is not
    interrupted.
    """
    for index, item in enumerate(items):
        if cancel_event is not None and cancel_event.is_set():
            _logger.info("Sequential batch cancelled before item %d.", index)
            return
        try:
            result = worker(item)
        except Exception as exc:  # noqa: BLE001
            _logger.warning("Batch item %d raised: %s", index, exc)
            yield BatchProgress(index=index, item=item, success=False, error=str(exc))
            continue
        if not result.success:
            _logger.warning("Batch item %d failed: %s", index, result.error)
            yield BatchProgress(index=index, item=item, success=False, error=result.error)
            continue
        yield BatchProgress(index=index, item=item, success=True, result=result.data)


@dataclass
class NarrationProgress:
    index: int
    chunk: NarrationChunk
    success: bool
    error: Optional[str] = None


def _chunk_with_audio(chunk: NarrationChunk, data: Any) -> NarrationChunk:
    payload = data if isinstance(data, dict) else {}
    audio_url = payload.get("audioUrl") or payload.get("audio_url")
    duration = payload.get("duration")
    if duration is None and isinstance(audio_url, str) and audio_url.startswith("data:"):
        duration = estimate_duration_from_data_uri(audio_url)
    return chunk.model_copy(update={"audio_url": audio_url, "duration": duration})


def generate_all_narration(
    chunks: list[NarrationChunk],
    synthesize: Callable[[NarrationChunk], ActionResult],
    cancel_event: threading.Event | None = None,
    only_missing: bool = True,
) -> Iterator[NarrationProgress]:
    """Generate narration audio for each chunk in order.

    ``chunks`` is updated in place as each chunk completes, so a caller can
    persist the list after any yielded step.
    """
    positions = [pos for pos, chunk in enumerate(chunks) if not (only_missing and chunk.audio_url)]
    for progress in run_sequential(positions, lambda pos: synthesize(chunks[pos]), cancel_event):
        pos = progress.item
        if progress.success:
            chunks[pos] = _chunk_with_audio(chunks[pos], progress.result)
        yield NarrationProgress(index=pos, chunk=chunks[pos], success=progress.success, error=progress.error)


def generate_all_images(
    prompts: list[str],
    generate: Callable[[str], ActionResult],
    cancel_event: threading.Event | None = None,
    chapter_number: int | None = None,
) -> Iterator[tuple[int, GeneratedImage | None, Optional[str]]]:
    """Generate one image per prompt, sequentially; yields ``(index, image, error)``."""
    for progress in run_sequential(prompts, generate, cancel_event):
        if not progress.success:
            yield progress.index, None, progress.error
            continue
        data = progress.result if isinstance(progress.result, dict) else {}
        image_url = str(data.get("imageUrl") or data.get("image_url") or "")
        if not image_url:
            yield progress.index, None, "Image generation returned no image URL."
            continue
        image = GeneratedImage(
            original_prompt=progress.item,
            request_prompt=str(data.get("requestPrompt") or progress.item),
            image_url=image_url,
            is_chapter_generated=True if chapter_number is not None else None,
            chapter_number=chapter_number,
        )
        yield progress.index, image, None
