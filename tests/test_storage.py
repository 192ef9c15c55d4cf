from pathlib import Path

import pytest

from storyreel import storage
from storyreel.models import GeneratedImage, Story


@pytest.fixture(autouse=True)
def _isolated_db(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(storage, "DB_PATH", tmp_path / "stories.db")


def test_save_assigns_id_and_get_round_trips() -> None:
    story = Story(title="The Lighthouse", generated_images=[GeneratedImage(image_id="a", image_url="https://x/a.png")])

    saved = storage.save_story(story, "u1")
    loaded = storage.get_story(saved.data, "u1")

    assert saved.success
    assert loaded.success
    assert loaded.data.id == saved.data
    assert loaded.data.user_id == "u1"
    assert loaded.data.title == "The Lighthouse"
    assert loaded.data.generated_images[0].image_id == "a"
    assert loaded.data.created_at


def test_missing_story_is_a_failure() -> None:
    result = storage.get_story("nope", "u1")

    assert result.success is False
    assert result.error == "Story not found."


def test_wrong_owner_cannot_read_or_overwrite() -> None:
    story_id = storage.save_story(Story(title="Mine"), "u1").data

    assert storage.get_story(story_id, "u2").success is False
    assert storage.save_story(Story(id=story_id, title="Theirs"), "u2").success is False
    assert storage.get_story(story_id, "u1").data.title == "Mine"


def test_update_story_timeline_persists_tracks() -> None:
    story_id = storage.save_story(Story(title="t"), "u1").data
    tracks = [{"id": "video-track-1", "type": "video", "name": "Video 1", "items": []}]

    result = storage.update_story_timeline(story_id, "u1", tracks)

    assert result.success
    assert storage.get_story(story_id, "u1").data.timeline_tracks == tracks


def test_update_story_timeline_requires_id() -> None:
    assert storage.update_story_timeline("", "u1", []).success is False


def test_list_stories_only_returns_owned() -> None:
    storage.save_story(Story(title="one"), "u1")
    storage.save_story(Story(title="two"), "u1")
    storage.save_story(Story(title="other"), "u2")

    listed = storage.list_stories("u1")

    assert listed.success
    assert sorted(row["title"] for row in listed.data) == ["one", "two"]


def test_delete_story() -> None:
    story_id = storage.save_story(Story(title="gone"), "u1").data

    assert storage.delete_story(story_id, "u2").success is False
    assert storage.delete_story(story_id, "u1").success is True
    assert storage.get_story(story_id, "u1").success is False


def test_unknown_fields_are_preserved() -> None:
    story = storage.parse_story_document('{"title": "t", "userPrompt": "p", "customField": 7}')

    story_id = storage.save_story(story, "u1").data
    loaded = storage.get_story(story_id, "u1").data

    assert loaded.user_prompt == "p"
    assert loaded.model_extra["customField"] == 7


def test_first_save_creates_schema(tmp_path: Path) -> None:
    assert not storage.db_path().exists()

    saved = storage.save_story(Story(title="Fresh"), "u1")

    assert saved.success, saved.error
    assert storage.list_stories("u1").data[0]["title"] == "Fresh"


def test_database_follows_data_dir_setting(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(storage, "DB_PATH", None)
    monkeypatch.setenv("STORYREEL_DATA_DIR", str(tmp_path / "state"))

    saved = storage.save_story(Story(title="Elsewhere"), "u1")

    assert saved.success, saved.error
    assert storage.db_path() == tmp_path / "state" / "storyreel.db"
    assert storage.db_path().exists()
