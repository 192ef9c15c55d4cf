from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, validator


class TrackKind(str, Enum):
    VIDEO = "video"
    NARRATION = "narration"
    AUDIO = "audio"
    TEXT = "text"


class MediaType(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    TEXT = "text"


_TRACK_ICONS = {
    TrackKind.VIDEO: "Video",
    TrackKind.NARRATION: "Music2",
    TrackKind.AUDIO: "Music",
    TrackKind.TEXT: "Text",
}


def icon_for_track(kind: TrackKind | str) -> str:
    """Icon name shown for a track kind; persisted for display only, never read back."""
    try:
        return _TRACK_ICONS[TrackKind(kind)]
    except ValueError:
        return "ImageIcon"


class _TimelineModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


class ItemUI(_TimelineModel):
    width: Optional[Union[int, float, str]] = None
    margin_left: Optional[Union[int, float, str]] = Field(default=None, alias="marginLeft")


class TimelineMediaItem(_TimelineModel):
    id: str
    type: MediaType
    original_index: Optional[int] = Field(default=None, alias="originalIndex")
    image_id: Optional[str] = Field(default=None, alias="imageId")
    source_id: Optional[str] = Field(default=None, alias="sourceId")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    script_segment: Optional[str] = Field(default=None, alias="scriptSegment")
    title: Optional[str] = None
    start_time: Optional[float] = Field(default=None, alias="startTime")
    duration: Optional[float] = None
    ui: Optional[ItemUI] = None

    def same_origin(self, other: "TimelineMediaItem") -> bool:
        """Whether both placements came from the same media.

        Identities are compared in order of stability, using the first one both
        items carry: ``image_id``, then ``source_id``, then ``original_index``.
        """
        if self.image_id and other.image_id:
            return self.image_id == other.image_id
        if self.source_id and other.source_id:
            return self.source_id == other.source_id
        if self.original_index is not None and other.original_index is not None:
            return self.original_index == other.original_index
        return False


class TimelineTrack(_TimelineModel):
    id: str
    type: TrackKind
    name: str
    items: List[TimelineMediaItem] = Field(default_factory=list)
    height: str = "h-[60px]"
    accepts: List[MediaType] = Field(default_factory=list)
    empty_state_message: str = Field(default="", alias="emptyStateMessage")
    show_generate_button: Optional[bool] = Field(default=None, alias="showGenerateButton")

    @validator("accepts", pre=True)
    def drop_unknown_media_types(cls, value: Any) -> list:
        known = {member.value for member in MediaType}
        return [item for item in (value or []) if str(getattr(item, "value", item)) in known]

    @property
    def icon_name(self) -> str:
        return icon_for_track(self.type)

    def accepts_type(self, media_type: MediaType | str) -> bool:
        return str(getattr(media_type, "value", media_type)) in {str(a) for a in self.accepts}


def rehydrate_tracks(snapshot: Iterable[dict] | None) -> list[TimelineTrack]:
    """Rebuild tracks from a persisted snapshot; a stored ``iconName`` is ignored."""
    tracks: list[TimelineTrack] = []
    for raw in snapshot or []:
        payload = {key: value for key, value in dict(raw).items() if key != "iconName"}
        tracks.append(TimelineTrack.model_validate(payload))
    return tracks


def serialize_tracks(tracks: Iterable[TimelineTrack]) -> list[dict]:
    payload: list[dict] = []
    for track in tracks:
        record = track.model_dump(by_alias=True, exclude_none=True)
        record["iconName"] = track.icon_name
        payload.append(record)
    return payload
