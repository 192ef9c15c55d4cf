from __future__ import annotations

import threading
from pathlib import Path

import streamlit as st

from storyreel.config import Settings
from storyreel.jobs import create_job, get_job, latest_completed_job, render_story
from storyreel.models import Story
from storyreel.storage import get_story, list_stories, save_story, update_story_timeline
from storyreel.video.composition import compose
from storyreel.video.scenes import SceneCache
from storyreel.video.timeline_builder import script_segment_for_image
from storyreel.video.timeline_editor import DraggedMedia, TimelineEditor
from storyreel.video.timeline_schema import MediaType, TimelineMediaItem

LANGUAGES = {"English": "en", "Spanish": "es", "Romanian": "ro"}


def _pending_messages() -> list[str]:
    # Plain list so the debounce timer thread can append without a script context.
    return st.session_state.setdefault("assemble_messages", [])


def _show_pending_messages() -> None:
    messages = _pending_messages()
    while messages:
        st.toast(messages.pop(0))


def _scene_cache(settings: Settings) -> SceneCache:
    cache = st.session_state.get("scene_cache")
    if cache is None or cache.max_entries != settings.scene_cache_size:
        cache = SceneCache(max_entries=settings.scene_cache_size)
        st.session_state.scene_cache = cache
    return cache


def _editor_for(story: Story, user_id: str, settings: Settings) -> TimelineEditor:
    editor: TimelineEditor | None = st.session_state.get("timeline_editor")
    if editor is not None and editor.story_id == story.id:
        return editor
    if editor is not None:
        editor.flush()
        editor.close()

    editor = TimelineEditor(
        story_id=str(story.id),
        save=lambda story_id, tracks: update_story_timeline(story_id, user_id, tracks),
        notify=_pending_messages().append,
        delay=settings.timeline_save_delay_sec,
    )
    editor.load(story)
    st.session_state.timeline_editor = editor
    return editor


def _pick_story(user_id: str) -> Story | None:
    listed = list_stories(user_id)
    if not listed.success:
        st.error(listed.error)
        return None
    if not listed.data:
        st.info("No stories yet. Save a story first.")
        return None

    labels = {f"{row['title'] or 'Untitled'} ({row['id'][:8]})": row["id"] for row in listed.data}
    label = st.selectbox("Story", list(labels.keys()))
    loaded = get_story(labels[label], user_id)
    if not loaded.success:
        st.error(loaded.error)
        return None
    return loaded.data


def _media_library(story: Story, editor: TimelineEditor, chunks) -> None:
    st.subheader("All media")
    images = story.generated_images
    script = story.generated_script or ""
    for idx, image in enumerate(images):
        cols = st.columns([1, 3, 1])
        if image.image_url:
            cols[0].image(image.image_url, width="stretch")
        cols[1].caption(image.original_prompt[:80] or f"Image {idx + 1}")
        if cols[2].button("Add", key=f"add-image-{image.image_id}"):
            dragged = DraggedMedia(
                source_id=f"media-image-{image.image_id}",
                type=MediaType.IMAGE.value,
                url=image.image_url,
                original_index=idx,
                image_id=image.image_id,
                prompt=image.original_prompt,
                script_segment=script_segment_for_image(idx, len(images), script),
            )
            if editor.move_item(dragged, "video-track-1"):
                st.rerun()

    for chunk in chunks:
        if not chunk.audio_url:
            continue
        cols = st.columns([4, 1])
        cols[0].caption(f"Narration {chunk.index + 1}: {chunk.text[:60]}")
        if cols[1].button("Add", key=f"add-audio-{chunk.id}"):
            dragged = DraggedMedia(source_id=f"media-audio-{chunk.id}", type=MediaType.AUDIO.value, url=chunk.audio_url)
            if editor.move_item(dragged, "narration-track-1"):
                st.rerun()


def _item_controls(editor: TimelineEditor, item: TimelineMediaItem) -> None:
    ui = item.ui
    cols = st.columns([3, 2, 2, 1, 1])
    marker = "▶ " if editor.selected_item_id == item.id else ""
    cols[0].write(f"{marker}{item.title or item.id}")
    width = cols[1].text_input("Width", value=str(ui.width if ui and ui.width is not None else ""), key=f"w-{item.id}")
    margin = cols[2].text_input(
        "Margin", value=str(ui.margin_left if ui and ui.margin_left is not None else ""), key=f"m-{item.id}"
    )
    if width and width != str(ui.width if ui else ""):
        editor.resize_item(item.id, width)
    if margin and margin != str(ui.margin_left if ui else ""):
        editor.set_item_margin(item.id, margin)
    if cols[3].button("Select", key=f"sel-{item.id}"):
        editor.select(item.id)
        st.rerun()
    if cols[4].button("Delete", key=f"del-{item.id}"):
        if editor.delete_item(item.id):
            st.rerun()


def _tracks(editor: TimelineEditor) -> None:
    st.subheader("Timeline")
    for track in editor.tracks:
        st.markdown(f"**{track.name}** · `{track.icon_name}`")
        if not track.items:
            st.info(track.empty_state_message or "Empty track.")
            continue
        for item in track.items:
            _item_controls(editor, item)

    cols = st.columns(2)
    if cols[0].button("Delete selected"):
        if editor.delete_item():
            st.rerun()
    if cols[1].button("Save timeline now"):
        result = editor.flush()
        if result is not None and result.success:
            st.success("Timeline saved.")


def _image_history(story: Story, editor: TimelineEditor, user_id: str, settings: Settings) -> None:
    if not editor.selected_item_id:
        return
    _, item = editor.find_item(editor.selected_item_id)
    if item is None or item.type != MediaType.IMAGE.value:
        return
    image = story.image_by_reference(item.image_id, item.original_index)
    if image is None or not image.history:
        return

    st.subheader("Image history")
    for idx, entry in enumerate(image.history):
        cols = st.columns([1, 3, 1])
        cols[0].image(entry.image_url, width="stretch")
        cols[1].caption(entry.original_prompt[:120])
        if cols[2].button("Revert", key=f"revert-{image.image_id}-{idx}"):
            editor.flush()
            position = story.index_of_image(image.image_id)
            story.generated_images[position] = image.reverted_to(idx, limit=settings.image_history_limit)
            story.timeline_tracks = editor.snapshot()
            saved = save_story(story, user_id)
            if saved.success:
                st.rerun()
            else:
                st.error(saved.error)


def _render_controls(story: Story, chunks, settings: Settings) -> None:
    st.subheader("Render")
    composition = compose(story.generated_images, chunks, fps=settings.fps, cache=_scene_cache(settings))
    st.caption(
        f"{len(composition.scenes)} scenes · {composition.duration_in_frames} frames · "
        f"{composition.duration_seconds:.1f}s at {composition.fps} fps"
    )

    job_id = st.session_state.get("render_job_id")
    job = get_job(job_id) if job_id else None
    if job is not None and not job.finished:
        st.progress(job.progress / 100.0, text=f"Rendering… {job.progress}%")
        if st.button("Refresh status"):
            st.rerun()
    elif st.button("Render video", type="primary"):
        job = create_job(str(story.id), story.title)
        st.session_state.render_job_id = job.id
        threading.Thread(
            target=render_story,
            args=(story, job.id),
            kwargs={"language": st.session_state.get("assemble_language", "en"), "settings": settings},
            daemon=True,
        ).start()
        st.rerun()
    if job is not None and job.status == "error":
        st.error(f"Render failed: {job.error}")

    latest = latest_completed_job(str(story.id))
    if latest is not None and latest.download_url and Path(latest.download_url).exists():
        st.download_button(
            "Download MP4",
            data=Path(latest.download_url).read_bytes(),
            file_name=Path(latest.download_url).name,
            mime="video/mp4",
        )


def render_assemble_page(user_id: str, settings: Settings) -> None:
    story = _pick_story(user_id)
    if story is None:
        _show_pending_messages()
        return

    editor = _editor_for(story, user_id, settings)
    language_label = st.radio("Narration language", list(LANGUAGES.keys()), horizontal=True)
    st.session_state.assemble_language = LANGUAGES[language_label]
    chunks = story.chunks_for_language(LANGUAGES[language_label])

    library_col, timeline_col = st.columns([1, 2])
    with library_col:
        _media_library(story, editor, chunks)
    with timeline_col:
        _tracks(editor)
        _image_history(story, editor, user_id, settings)
    _render_controls(story, chunks, settings)
    _show_pending_messages()
