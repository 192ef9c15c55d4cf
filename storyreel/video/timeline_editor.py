from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from storyreel.models import ActionResult, Story

from .timeline_builder import build_default_tracks, new_item_id
from .timeline_schema import (
    ItemUI,
    MediaType,
    TimelineMediaItem,
    TimelineTrack,
    rehydrate_tracks,
    serialize_tracks,
)

_logger = logging.getLogger(__name__)

DEFAULT_ITEM_DURATIONS = {MediaType.IMAGE.value: 5.0, MediaType.AUDIO.value: 10.0, MediaType.TEXT.value: 5.0}

SaveTimeline = Callable[[str, list], ActionResult]
Notify = Callable[[str], Any]


@dataclass
class DraggedMedia:
    """A media-library entry being dropped onto a track."""

    source_id: str
    type: str
    url: Optional[str] = None
    original_index: Optional[int] = None
    image_id: Optional[str] = None
    prompt: Optional[str] = None
    script_segment: Optional[str] = None

    def to_item(self) -> TimelineMediaItem:
        media_type = MediaType(self.type)
        title = f"{self.prompt[:30]}..." if self.prompt else f"New {media_type.value}"
        return TimelineMediaItem(
            id=new_item_id(media_type.value),
            type=media_type,
            source_id=self.source_id,
            original_index=self.original_index,
            image_id=self.image_id,
            image_url=self.url if media_type == MediaType.IMAGE else None,
            audio_url=self.url if media_type == MediaType.AUDIO else None,
            script_segment=self.script_segment,
            title=title,
            start_time=0.0,
            duration=DEFAULT_ITEM_DURATIONS[media_type.value],
        )


class TimelineEditor:
    """Owns the mutable track list of one story and saves it after edits settle.

    Loads never schedule a save. User edits mark the timeline modified and
    (re)start a debounce timer; the last edit wins.
    """

    def __init__(
        self,
        story_id: str,
        save: SaveTimeline,
        notify: Notify | None = None,
        delay: float = 1.0,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.story_id = story_id
        self._save = save
        self._notify = notify or (lambda message: None)
        self.delay = float(delay)
        self._timer_factory = timer_factory
        self._timer: Any = None
        self._lock = threading.RLock()
        self._revision = 0
        self.tracks: list[TimelineTrack] = []
        self.selected_item_id: Optional[str] = None
        self.modified = False

    @property
    def save_pending(self) -> bool:
        return self._timer is not None

    def load(self, story: Story, chapter: int = 1) -> list[TimelineTrack]:
        with self._lock:
            self._cancel_timer()
            if story.timeline_tracks:
                self.tracks = rehydrate_tracks(story.timeline_tracks)
            else:
                self.tracks = build_default_tracks(story, chapter=chapter)
            self.modified = False
            self.selected_item_id = None
            return self.tracks

    def snapshot(self) -> list[dict]:
        with self._lock:
            return serialize_tracks(self.tracks)

    def track(self, track_id: str) -> Optional[TimelineTrack]:
        return next((t for t in self.tracks if t.id == track_id), None)

    def find_item(self, item_id: str) -> tuple[Optional[TimelineTrack], Optional[TimelineMediaItem]]:
        for track in self.tracks:
            for item in track.items:
                if item.id == item_id:
                    return track, item
        return None, None

    def move_item(self, dragged: Union[DraggedMedia, str], target_track_id: str) -> bool:
        """Drop a library entry or an existing placement onto ``target_track_id``.

        Returns True only when an item was inserted into the target track.
        """
        with self._lock:
            target = self.track(target_track_id)
            if target is None:
                _logger.warning("Drop target track %s not found.", target_track_id)
                return False

            source_track: Optional[TimelineTrack] = None
            if isinstance(dragged, str):
                source_track, item = self.find_item(dragged)
                if item is None:
                    _logger.warning("Dragged item %s is not on the timeline.", dragged)
                    return False
                if source_track is target:
                    return False
            else:
                item = dragged.to_item()

            if not target.accepts_type(item.type):
                self._notify(f"The '{target.name}' track does not accept '{item.type}' items.")
                return False

            if any(existing.same_origin(item) for existing in target.items if existing.id != item.id):
                _logger.info("Item %s is already on track %s; drop ignored.", item.id, target.id)
                return False

            if source_track is not None:
                source_track.items = [i for i in source_track.items if i.id != item.id]
            target.items = [*target.items, item]
            self._mark_modified()
            return True

    def select(self, item_id: Optional[str]) -> None:
        self.selected_item_id = item_id

    def delete_item(self, item_id: Optional[str] = None) -> bool:
        with self._lock:
            key = item_id or self.selected_item_id
            if not key:
                self._notify("Please select an item on the timeline to delete.")
                return False
            removed = False
            for track in self.tracks:
                kept = [item for item in track.items if item.id != key]
                if len(kept) != len(track.items):
                    track.items = kept
                    removed = True
            self.selected_item_id = None
            if removed:
                self._mark_modified()
            return removed

    def _update_ui(self, item_id: str, **changes: Any) -> TimelineMediaItem:
        _, item = self.find_item(item_id)
        if item is None:
            raise ValueError(f"Timeline item {item_id!r} not found.")
        current = item.ui or ItemUI()
        item.ui = current.model_copy(update=changes)
        self._mark_modified()
        return item

    def resize_item(self, item_id: str, width: Union[int, float, str]) -> TimelineMediaItem:
        with self._lock:
            return self._update_ui(item_id, width=width)

    def set_item_margin(self, item_id: str, margin_left: Union[int, float, str]) -> TimelineMediaItem:
        with self._lock:
            return self._update_ui(item_id, margin_left=margin_left)

    def _mark_modified(self) -> None:
        self.modified = True
        self._revision += 1
        self._schedule_save()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_save(self) -> None:
        self._cancel_timer()
        timer = self._timer_factory(self.delay, self.flush)
        if hasattr(timer, "daemon"):
            timer.daemon = True
        self._timer = timer
        timer.start()

    def flush(self) -> Optional[ActionResult]:
        """Save now if there are unsaved edits. Failures are reported, not raised."""
        with self._lock:
            self._cancel_timer()
            if not self.modified:
                return None
            revision = self._revision
            payload = serialize_tracks(self.tracks)

        try:
            result = self._save(self.story_id, payload)
        except Exception as exc:  # noqa: BLE001
            _logger.exception("Timeline save raised for story %s", self.story_id)
            result = ActionResult.fail(f"A client-side error occurred: {exc}")

        with self._lock:
            if result.success:
                if revision == self._revision:
                    self.modified = False
                _logger.info("Timeline saved for story %s (%d tracks).", self.story_id, len(payload))
            else:
                _logger.warning("Timeline save failed for story %s: %s", self.story_id, result.error)
                self._notify(f"Error Saving Timeline: {result.error or 'An unknown error occurred.'}")
        return result

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()
