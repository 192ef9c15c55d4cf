from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from storyreel.config import load_settings
from storyreel.models import ActionResult, Story

_logger = logging.getLogger(__name__)

# Overrides the settings-derived location when set.
DB_PATH: Path | None = None
DB_FILENAME = "storyreel.db"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def db_path() -> Path:
    return DB_PATH if DB_PATH is not None else load_settings().data_dir / DB_FILENAME


def _connect() -> sqlite3.Connection:
    path = db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(path)


def init_db() -> None:
    with _connect() as conn:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS stories (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                document TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_stories_user ON stories(user_id)")


def _load_row(story_id: str) -> tuple[str, str] | None:
    init_db()
    with _connect() as conn:
        row = conn.execute("SELECT user_id, document FROM stories WHERE id = ?", (story_id,)).fetchone()
    return (row[0], row[1]) if row else None


def get_story(story_id: str, user_id: str) -> ActionResult:
    if not story_id or not user_id:
        return ActionResult.fail("Story ID and user ID are required.")
    try:
        row = _load_row(story_id)
    except sqlite3.Error as exc:
        _logger.exception("Failed to read story %s", story_id)
        return ActionResult.fail(f"Database error: {exc}")
    if row is None:
        return ActionResult.fail("Story not found.")
    owner, document = row
    if owner != user_id:
        _logger.warning("User %s requested story %s owned by someone else.", user_id, story_id)
        return ActionResult.fail("Unauthorized access to story.")
    try:
        return ActionResult.ok(Story.model_validate_json(document))
    except ValidationError as exc:
        _logger.error("Stored story %s is invalid: %s", story_id, exc)
        return ActionResult.fail(f"Stored story is invalid: {exc}")


def save_story(story: Story, user_id: str) -> ActionResult:
    """Insert or replace ``story``; assigns an id on first save. Data is the story id."""
    if not user_id:
        return ActionResult.fail("User ID is required.")
    try:
        init_db()
        if story.id:
            row = _load_row(story.id)
            if row is not None and row[0] != user_id:
                return ActionResult.fail("Unauthorized: you do not own this story.")
        now = _now()
        updates = {"user_id": user_id, "updated_at": now}
        if not story.id:
            updates["id"] = uuid.uuid4().hex
        if not story.created_at:
            updates["created_at"] = now
        stored = story.model_copy(update=updates)
        with _connect() as conn:
            conn.execute(
                """
                INSERT INTO stories (id, user_id, title, document, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    document=excluded.document,
                    updated_at=excluded.updated_at
                """,
                (
                    stored.id,
                    user_id,
                    stored.title,
                    stored.model_dump_json(by_alias=True, exclude_none=True),
                    stored.created_at,
                    stored.updated_at,
                ),
            )
    except sqlite3.Error as exc:
        _logger.exception("Failed to save story %s", story.id)
        return ActionResult.fail(f"Database error: {exc}")
    _logger.info("Saved story %s for user %s", stored.id, user_id)
    return ActionResult.ok(stored.id)


def update_story_timeline(story_id: str, user_id: str, timeline_tracks: list[dict]) -> ActionResult:
    """Persist a serialized track list on an existing story."""
    if not story_id:
        return ActionResult.fail("Story ID is required to update the timeline.")
    loaded = get_story(story_id, user_id)
    if not loaded.success:
        return loaded
    story = loaded.data.model_copy(update={"timeline_tracks": [dict(track) for track in timeline_tracks]})
    saved = save_story(story, user_id)
    if not saved.success:
        return saved
    return ActionResult.ok(story_id)


def list_stories(user_id: str) -> ActionResult:
    """Summaries of a user's stories, newest first."""
    if not user_id:
        return ActionResult.fail("User ID is required.")
    try:
        init_db()
        with _connect() as conn:
            rows = conn.execute(
                "SELECT id, title, updated_at FROM stories WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            ).fetchall()
    except sqlite3.Error as exc:
        _logger.exception("Failed to list stories for %s", user_id)
        return ActionResult.fail(f"Database error: {exc}")
    return ActionResult.ok([{"id": r[0], "title": r[1], "updatedAt": r[2]} for r in rows])


def delete_story(story_id: str, user_id: str) -> ActionResult:
    loaded = get_story(story_id, user_id)
    if not loaded.success:
        return loaded
    try:
        with _connect() as conn:
            conn.execute("DELETE FROM stories WHERE id = ? AND user_id = ?", (story_id, user_id))
    except sqlite3.Error as exc:
        _logger.exception("Failed to delete story %s", story_id)
        return ActionResult.fail(f"Database error: {exc}")
    return ActionResult.ok(story_id)


def parse_story_document(document: str) -> Story:
    """Parse a JSON export of a story (camelCase keys)."""
    return Story.model_validate(json.loads(document))
