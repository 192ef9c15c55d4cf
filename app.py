import logging

import streamlit as st

from storyreel.config import get_secret, load_settings
from storyreel.storage import parse_story_document, save_story
from storyreel.ui.assemble import render_assemble_page
from storyreel.video.utils import FFmpegNotFoundError, ensure_ffmpeg_exists

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ----------------------------
# Auth gate (uses Streamlit secrets)
# ----------------------------

def require_passcode() -> None:
    expected = get_secret("APP_PASSCODE", "")
    if not expected:
        return

    st.session_state.setdefault("auth_ok", False)
    if st.session_state.auth_ok:
        return

    st.title("🔒 StoryReel")
    code = st.text_input("Password", type="password")
    if st.button("Log in", type="primary"):
        st.session_state.auth_ok = code == expected
        if not st.session_state.auth_ok:
            st.error("Incorrect password.")
        st.rerun()
    st.stop()


def current_user_id() -> str:
    st.session_state.setdefault("user_id", get_secret("STORYREEL_USER_ID", "local-user"))
    return st.session_state.user_id


def import_story_sidebar(user_id: str) -> None:
    with st.sidebar:
        st.subheader("Import story")
        upload = st.file_uploader("Story JSON", type=["json"])
        if upload is not None and st.button("Import"):
            try:
                story = parse_story_document(upload.getvalue().decode("utf-8"))
            except ValueError as exc:
                st.error(f"Invalid story file: {exc}")
                return
            saved = save_story(story, user_id)
            if saved.success:
                st.success(f"Imported story {saved.data}.")
            else:
                st.error(saved.error)


def main() -> None:
    st.set_page_config(page_title="StoryReel", layout="wide")
    require_passcode()
    settings = load_settings()
    user_id = current_user_id()

    st.title("StoryReel")
    st.caption("Arrange narrated images on a timeline and render them to video.")

    try:
        ensure_ffmpeg_exists()
    except FFmpegNotFoundError as exc:
        st.warning(f"{exc} Rendering is disabled until ffmpeg is installed.")

    import_story_sidebar(user_id)
    render_assemble_page(user_id, settings)


if __name__ == "__main__":
    main()
