from pathlib import Path

import pytest

from storyreel.config import Settings, clean_value, get_secret, get_setting_int, load_settings

_KEYS = [
    "STORYREEL_FPS",
    "TIMELINE_SAVE_DELAY_SEC",
    "SCENE_CACHE_SIZE",
    "IMAGE_HISTORY_LIMIT",
    "STORYREEL_DATA_DIR",
    "RENDER_TIMEOUT_SEC",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
        monkeypatch.delenv(key.lower(), raising=False)


def test_defaults() -> None:
    assert load_settings() == Settings()


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("STORYREEL_FPS", "24")
    monkeypatch.setenv("TIMELINE_SAVE_DELAY_SEC", "0.25")
    monkeypatch.setenv("STORYREEL_DATA_DIR", "/srv/storyreel")

    settings = load_settings()

    assert settings.fps == 24
    assert settings.timeline_save_delay_sec == 0.25
    assert settings.data_dir == Path("/srv/storyreel")


def test_unparsable_values_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("STORYREEL_FPS", "fast")
    monkeypatch.setenv("SCENE_CACHE_SIZE", "0")

    settings = load_settings()

    assert settings.fps == 30
    assert settings.scene_cache_size == 1
    assert get_setting_int("STORYREEL_FPS", 7) == 7


def test_placeholder_and_quoted_values(monkeypatch) -> None:
    monkeypatch.setenv("STORYREEL_DATA_DIR", "your_path_here")
    assert get_secret("STORYREEL_DATA_DIR", "data") == "data"

    monkeypatch.setenv("STORYREEL_DATA_DIR", '"  /tmp/reel  "')
    assert get_secret("STORYREEL_DATA_DIR") == "/tmp/reel"


def test_clean_value_treats_placeholders_as_unset() -> None:
    assert clean_value(None) == ""
    assert clean_value(" null ") == ""
    assert clean_value("paste-key") == ""
    assert clean_value("'abc'") == "abc"
    assert clean_value(42) == "42"


def test_streamlit_secrets_win_over_environment(monkeypatch) -> None:
    import streamlit as st

    monkeypatch.setattr(st, "secrets", {"storyreel_data_dir": "/from/secrets"})
    monkeypatch.setenv("STORYREEL_DATA_DIR", "/from/env")

    assert get_secret("STORYREEL_DATA_DIR") == "/from/secrets"


def test_lower_case_environment_name_is_found(monkeypatch) -> None:
    monkeypatch.setenv("storyreel_fps", "12")

    assert load_settings().fps == 12
