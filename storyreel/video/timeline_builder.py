from __future__ import annotations

import uuid

from storyreel.models import GeneratedImage, Story

from .timeline_schema import MediaType, TimelineMediaItem, TimelineTrack, TrackKind

DEFAULT_TRACK_LAYOUT = (
    ("video-track-1", TrackKind.VIDEO, "Video 1", "h-[90px]", [MediaType.IMAGE]),
    ("narration-track-1", TrackKind.NARRATION, "Narration", "h-[40px]", [MediaType.AUDIO]),
    ("text-track-1", TrackKind.TEXT, "Script", "h-[60px]", [MediaType.TEXT]),
)

MAIN_NARRATION_ITEM_ID = "narration-audio-main"


def new_item_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def script_segment_for_image(index: int, total: int, script: str | None) -> str:
    if not script or total <= 0:
        return ""
    segment_length = len(script) // total
    start = index * segment_length
    end = (index + 1) * segment_length
    if index == total - 1:
        return script[start:]
    return script[start:end] + ("..." if end < len(script) else "")


def _short_title(prompt: str, limit: int = 30) -> str:
    prompt = str(prompt or "")
    return prompt if len(prompt) <= limit else prompt[:limit] + "..."


def _chapter_images(story: Story) -> list[tuple[int, GeneratedImage]]:
    return [(idx, image) for idx, image in enumerate(story.generated_images) if image.is_chapter_generated]


def build_default_tracks(story: Story, chapter: int = 1) -> list[TimelineTrack]:
    """Default video/narration/text layout for a story that has no saved timeline."""
    images = _chapter_images(story)
    script = story.generated_script or ""
    tracks: list[TimelineTrack] = []

    for track_id, kind, name, height, accepts in DEFAULT_TRACK_LAYOUT:
        items: list[TimelineMediaItem] = []
        empty_message = f"{name} track."
        show_generate = False

        if kind == TrackKind.VIDEO:
            if images:
                items = [
                    TimelineMediaItem(
                        id=new_item_id(f"img-{idx}"),
                        type=MediaType.IMAGE,
                        original_index=idx,
                        image_id=image.image_id,
                        image_url=image.image_url,
                        title=_short_title(image.original_prompt),
                    )
                    for idx, image in images
                ]
            else:
                empty_message = f"Image track empty. Generate images for Chapter {chapter}."
                show_generate = True
        elif kind == TrackKind.TEXT:
            if images and script:
                items = [
                    TimelineMediaItem(
                        id=new_item_id(f"text-{idx}"),
                        type=MediaType.TEXT,
                        original_index=idx,
                        image_id=image.image_id,
                        script_segment=script_segment_for_image(position, len(images), script),
                        title=f"Script for scene {idx + 1}",
                    )
                    for position, (idx, image) in enumerate(images)
                ]
            else:
                empty_message = "Script snippets will appear here once images are generated."
        elif kind == TrackKind.NARRATION:
            if story.narration_audio_url:
                items = [
                    TimelineMediaItem(
                        id=MAIN_NARRATION_ITEM_ID,
                        type=MediaType.AUDIO,
                        title="Main Narration",
                        audio_url=story.narration_audio_url,
                        duration=story.narration_audio_duration_seconds,
                    )
                ]
                empty_message = "Narration audio loaded."
            else:
                empty_message = "No narration audio available for this story."

        tracks.append(
            TimelineTrack(
                id=track_id,
                type=kind,
                name=name,
                items=items,
                height=height,
                accepts=list(accepts),
                empty_state_message=empty_message,
                show_generate_button=show_generate,
            )
        )
    return tracks
