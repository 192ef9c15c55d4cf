from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ActionResult:
    """Envelope returned by every storage and generation collaborator."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=str(error or "Unknown error"))


class RecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NarrationChunk(RecordModel):
    id: str
    text: str = ""
    index: int = 0
    duration: Optional[float] = None
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")

    @property
    def has_duration(self) -> bool:
        return self.duration is not None and self.duration > 0


class ImageHistoryEntry(RecordModel):
    original_prompt: str = Field(default="", alias="originalPrompt")
    request_prompt: Optional[str] = Field(default=None, alias="requestPrompt")
    image_url: str = Field(alias="imageUrl")
    timestamp: str = Field(default_factory=_utc_now)


class GeneratedImage(RecordModel):
    image_id: str = Field(default_factory=lambda: uuid.uuid4().hex, alias="imageId")
    scene_index: Optional[int] = Field(default=None, alias="sceneIndex")
    original_prompt: str = Field(default="", alias="originalPrompt")
    request_prompt: str = Field(default="", alias="requestPrompt")
    image_url: str = Field(default="", alias="imageUrl")
    width: Optional[int] = None
    height: Optional[int] = None
    chunk_id: Optional[str] = Field(default=None, alias="chunkId")
    chunk_index: Optional[int] = Field(default=None, alias="chunkIndex")
    is_chapter_generated: Optional[bool] = Field(default=None, alias="isChapterGenerated")
    chapter_number: Optional[int] = Field(default=None, alias="chapterNumber")
    history: List[ImageHistoryEntry] = Field(default_factory=list)

    @validator("image_id", pre=True)
    def ensure_image_id(cls, value: Any) -> str:
        value = str(value or "").strip()
        return value or uuid.uuid4().hex

    def _as_history_entry(self) -> ImageHistoryEntry:
        return ImageHistoryEntry(
            original_prompt=self.original_prompt,
            request_prompt=self.request_prompt or None,
            image_url=self.image_url,
        )

    def with_regenerated(
        self,
        image_url: str,
        original_prompt: str,
        request_prompt: str = "",
        limit: int = 5,
    ) -> "GeneratedImage":
        """Return a copy showing the new version, keeping at most ``limit`` past versions."""
        keep = max(1, int(limit))
        history = [*self.history, self._as_history_entry()][-keep:]
        return self.model_copy(
            update={
                "image_url": image_url,
                "original_prompt": original_prompt,
                "request_prompt": request_prompt or original_prompt,
                "history": history,
            }
        )

    def reverted_to(self, history_index: int, limit: int = 5) -> "GeneratedImage":
        if history_index < 0 or history_index >= len(self.history):
            raise IndexError(f"No history entry at index {history_index}.")
        keep = max(1, int(limit))
        target = self.history[history_index]
        remaining = [entry for idx, entry in enumerate(self.history) if idx != history_index]
        remaining.append(self._as_history_entry())
        return self.model_copy(
            update={
                "image_url": target.image_url,
                "original_prompt": target.original_prompt,
                "request_prompt": target.request_prompt or target.original_prompt,
                "history": remaining[-keep:],
            }
        )


class Story(RecordModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    user_id: str = Field(default="", alias="userId")
    title: str = ""
    user_prompt: str = Field(default="", alias="userPrompt")
    status: Optional[str] = None
    generated_script: Optional[str] = Field(default=None, alias="generatedScript")
    narration_audio_url: Optional[str] = Field(default=None, alias="narrationAudioUrl")
    narration_audio_duration_seconds: Optional[float] = Field(default=None, alias="narrationAudioDurationSeconds")
    image_prompts: List[str] = Field(default_factory=list, alias="imagePrompts")
    generated_images: List[GeneratedImage] = Field(default_factory=list, alias="generatedImages")
    script_chunks: List[str] = Field(default_factory=list, alias="scriptChunks")
    narration_chunks: List[NarrationChunk] = Field(default_factory=list, alias="narrationChunks")
    spanish_narration_chunks: List[NarrationChunk] = Field(default_factory=list, alias="spanishNarrationChunks")
    romanian_narration_chunks: List[NarrationChunk] = Field(default_factory=list, alias="romanianNarrationChunks")
    # Kept as raw records; storyreel.video.timeline_schema owns their shape.
    timeline_tracks: List[dict] = Field(default_factory=list, alias="timelineTracks")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    def chunks_for_language(self, language: str = "en") -> List[NarrationChunk]:
        lang = str(language or "en").strip().lower()
        if lang == "es":
            return self.spanish_narration_chunks
        if lang == "ro":
            return self.romanian_narration_chunks
        if lang != "en":
            raise ValueError(f"Unsupported narration language {language!r}.")
        return self.narration_chunks

    def image_by_reference(
        self,
        image_id: Optional[str] = None,
        original_index: Optional[int] = None,
    ) -> Optional[GeneratedImage]:
        """Resolve a timeline back-reference; a stale ``image_id`` resolves to None."""
        if image_id:
            return next((image for image in self.generated_images if image.image_id == image_id), None)
        # Positional lookup only for items saved before image ids existed.
        if original_index is not None and 0 <= original_index < len(self.generated_images):
            return self.generated_images[original_index]
        return None

    def index_of_image(self, image_id: str) -> Optional[int]:
        for idx, image in enumerate(self.generated_images):
            if image.image_id == image_id:
                return idx
        return None
