from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence

import requests
from PIL import Image, UnidentifiedImageError

from storyreel.audio import (
    decode_data_uri,
    probe_audio_duration,
    sniff_audio_format,
    wav_duration_seconds,
    wrap_pcm_as_wav,
)
from storyreel.models import GeneratedImage, NarrationChunk

_logger = logging.getLogger(__name__)

ASSETS_DIRNAME = "render-assets"
DOWNLOAD_TIMEOUT_SEC = 60
PLACEHOLDER_SIZE = (1920, 1080)
PLACEHOLDER_COLOR = (51, 51, 51)


@dataclass
class RenderImage:
    local_path: str
    original_url: str
    chunk_id: Optional[str] = None
    chunk_index: Optional[int] = None
    original_prompt: str = ""


@dataclass
class RenderAssets:
    local_images: list[RenderImage] = field(default_factory=list)
    local_audio_chunks: list[NarrationChunk] = field(default_factory=list)
    image_dimensions: Optional[tuple[int, int]] = None


def _fetch_bytes(url: str) -> bytes:
    """Load bytes from a data URI, an http(s) URL or a local path."""
    if url.startswith("data:"):
        decoded = decode_data_uri(url)
        if decoded is None:
            raise ValueError("Malformed data URI")
        return decoded[1]
    if url.startswith(("http://", "https://")):
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT_SEC)
        response.raise_for_status()
        return response.content
    path = Path(url)
    if not path.exists():
        raise FileNotFoundError(f"Asset not found: {url}")
    return path.read_bytes()


def write_placeholder_image(path: Path, size: tuple[int, int] = PLACEHOLDER_SIZE) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, PLACEHOLDER_COLOR).save(path, format="PNG")
    return path


def _save_image(raw: bytes, path: Path) -> tuple[int, int]:
    with Image.open(BytesIO(raw)) as image:
        size = image.size
        image.convert("RGB").save(path, format="PNG")
    return size


def _download_image(index: int, image: GeneratedImage, assets_dir: Path) -> tuple[RenderImage, Optional[tuple[int, int]]]:
    path = assets_dir / f"image_{index:03d}.png"
    size: Optional[tuple[int, int]] = None
    try:
        if not image.image_url:
            raise ValueError("Image has no URL")
        size = _save_image(_fetch_bytes(image.image_url), path)
    except (requests.RequestException, OSError, ValueError, UnidentifiedImageError) as exc:
        _logger.warning("Image %d could not be downloaded (%s); using placeholder.", index, exc)
        write_placeholder_image(path)
    return (
        RenderImage(
            local_path=str(path),
            original_url=image.image_url,
            chunk_id=image.chunk_id,
            chunk_index=image.chunk_index,
            original_prompt=image.original_prompt,
        ),
        size,
    )


def _download_audio(index: int, chunk: NarrationChunk, assets_dir: Path) -> Optional[NarrationChunk]:
    if not chunk.audio_url:
        _logger.info("Chunk %s has no audio; skipping.", chunk.id)
        return None
    try:
        raw = _fetch_bytes(chunk.audio_url)
    except (requests.RequestException, OSError, ValueError) as exc:
        _logger.warning("Audio for chunk %s could not be downloaded: %s", chunk.id, exc)
        return None
    if not raw:
        _logger.warning("Audio for chunk %s is empty; skipping.", chunk.id)
        return None

    audio_format = sniff_audio_format(raw)
    if audio_format is None:
        raw = wrap_pcm_as_wav(raw)
        audio_format = "wav"
    path = assets_dir / f"audio_{index:03d}.{audio_format}"
    path.write_bytes(raw)

    duration = chunk.duration
    if duration is None or duration <= 0:
        duration = wav_duration_seconds(raw) if audio_format == "wav" else None
        if duration is None:
            duration = probe_audio_duration(path)
    return chunk.model_copy(update={"audio_url": str(path), "duration": duration})


def download_assets_for_rendering(
    images: Sequence[GeneratedImage],
    audio_chunks: Sequence[NarrationChunk],
    target_dir: str | Path,
) -> RenderAssets:
    """Materialise every image and narration clip under ``target_dir/render-assets``.

    Failed images are replaced by a placeholder so scene layout is unchanged.
    Chunks whose audio cannot be fetched are dropped.
    """
    assets_dir = Path(target_dir) / ASSETS_DIRNAME
    assets_dir.mkdir(parents=True, exist_ok=True)

    result = RenderAssets()
    for index, image in enumerate(images):
        render_image, size = _download_image(index, image, assets_dir)
        if result.image_dimensions is None and index == 0 and size is not None:
            result.image_dimensions = size
        result.local_images.append(render_image)

    for index, chunk in enumerate(audio_chunks):
        local_chunk = _download_audio(index, chunk, assets_dir)
        if local_chunk is not None:
            result.local_audio_chunks.append(local_chunk)

    _logger.info(
        "Prepared %d images and %d/%d audio chunks in %s",
        len(result.local_images),
        len(result.local_audio_chunks),
        len(audio_chunks),
        assets_dir,
    )
    return result
