"""Scene organisation, timeline editing and rendering for StoryReel."""

from .composition import Composition, calculate_duration, compose
from .ffmpeg_render import render_composition
from .scenes import SceneCache, SceneData, organize_scenes
from .timeline_builder import build_default_tracks
from .timeline_editor import DraggedMedia, TimelineEditor
from .timeline_schema import TimelineMediaItem, TimelineTrack, rehydrate_tracks, serialize_tracks

__all__ = [
    "Composition",
    "calculate_duration",
    "compose",
    "render_composition",
    "SceneCache",
    "SceneData",
    "organize_scenes",
    "build_default_tracks",
    "DraggedMedia",
    "TimelineEditor",
    "TimelineMediaItem",
    "TimelineTrack",
    "rehydrate_tracks",
    "serialize_tracks",
]
