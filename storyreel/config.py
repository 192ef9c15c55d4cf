"""Settings lookup for StoryReel.

Values come from Streamlit secrets when the app runs under Streamlit and from
the process environment otherwise. ``load_settings`` is the typed entry point;
``get_secret`` is for one-off values such as the app passcode.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET_VALUES = {"", "none", "null"}
_PLACEHOLDER_PREFIXES = ("paste_", "paste-", "your_", "your-", "replace_me", "changeme", "xxx")
_PLACEHOLDER_SUFFIXES = ("_here", "-here")


def clean_value(raw: object) -> str:
    """Unquote a raw setting; blanks and template placeholders read as unset."""
    text = str(raw or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    lowered = text.lower()
    if lowered in _UNSET_VALUES:
        return ""
    if lowered.startswith(_PLACEHOLDER_PREFIXES) or lowered.endswith(_PLACEHOLDER_SUFFIXES):
        return ""
    return text


def _key_variants(name: str) -> list[str]:
    return list(dict.fromkeys([name, name.lower(), name.upper()]))


def _from_streamlit_secrets(keys: list[str]) -> str:
    try:
        import streamlit as st

        for key in keys:
            if key in st.secrets:
                value = clean_value(st.secrets[key])
                if value:
                    return value
    except Exception as exc:  # noqa: BLE001 - a missing secrets.toml raises
        _logger.debug("Streamlit secrets unavailable: %s", exc)
    return ""


def _from_environment(keys: list[str]) -> str:
    for key in keys:
        value = clean_value(os.environ.get(key))
        if value:
            return value
    return ""


def get_secret(name: str, default: str = "") -> str:
    """Look ``name`` up in Streamlit secrets, then in the environment.

    Each source is tried with the name as given, lower-cased and upper-cased.
    """
    keys = _key_variants(name)
    return _from_streamlit_secrets(keys) or _from_environment(keys) or clean_value(default)


def _parsed(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = get_secret(name)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        _logger.warning("Ignoring unparsable %s=%r; using %r.", name, raw, default)
        return default


def get_setting_int(name: str, default: int) -> int:
    return _parsed(name, default, int)


def get_setting_float(name: str, default: float) -> float:
    return _parsed(name, default, float)


@dataclass(frozen=True)
class Settings:
    fps: int = 30
    timeline_save_delay_sec: float = 1.0
    scene_cache_size: int = 32
    image_history_limit: int = 5
    data_dir: Path = Path("data")
    render_timeout_sec: float = 600.0


def load_settings() -> Settings:
    return Settings(
        fps=max(1, get_setting_int("STORYREEL_FPS", 30)),
        timeline_save_delay_sec=max(0.0, get_setting_float("TIMELINE_SAVE_DELAY_SEC", 1.0)),
        scene_cache_size=max(1, get_setting_int("SCENE_CACHE_SIZE", 32)),
        image_history_limit=max(1, get_setting_int("IMAGE_HISTORY_LIMIT", 5)),
        data_dir=Path(get_secret("STORYREEL_DATA_DIR", "data")),
        render_timeout_sec=max(1.0, get_setting_float("RENDER_TIMEOUT_SEC", 600.0)),
    )
