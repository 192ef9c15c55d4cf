import threading

import pytest

from storyreel.audio import PLACEHOLDER_WAV_DATA_URI
from storyreel.models import ActionResult, NarrationChunk
from storyreel.narration import (
    estimate_chunk_duration,
    generate_all_images,
    generate_all_narration,
    prepare_script_chunks,
    run_sequential,
    split_script_into_chunks,
    split_script_with_target_chunks,
    total_narration_duration,
)


def test_split_script_into_sentences() -> None:
    script = "The tide rose. Did the keeper wake?  He did!\nThe lamp burned."

    assert split_script_into_chunks(script) == [
        "The tide rose.",
        "Did the keeper wake?",
        "He did!",
        "The lamp burned.",
    ]


def test_split_falls_back_to_paragraphs() -> None:
    script = "no punctuation here\n\nsecond paragraph"

    assert split_script_into_chunks(script) == ["no punctuation here", "second paragraph"]
    assert split_script_into_chunks("") == []


def test_split_with_target_chunks_groups_sentences() -> None:
    script = "One. Two. Three. Four. Five."

    assert split_script_with_target_chunks(script, 2) == ["One. Two. Three.", "Four. Five."]
    assert split_script_with_target_chunks(script, 10) == ["One.", "Two.", "Three.", "Four.", "Five."]


def test_prepare_script_chunks_has_contiguous_indices() -> None:
    chunks = prepare_script_chunks("One. Two. Three.")

    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert len({chunk.id for chunk in chunks}) == 3
    assert all(chunk.duration is None for chunk in chunks)


def test_estimate_chunk_duration() -> None:
    assert estimate_chunk_duration("") == 0.0
    assert estimate_chunk_duration("Hi.") == 1.0
    assert estimate_chunk_duration(" ".join(["word"] * 13)) == pytest.approx(5.0)


def test_total_narration_duration_estimates_missing_values() -> None:
    chunks = [
        NarrationChunk(id="a", text="ignored", duration=2.5),
        NarrationChunk(id="b", text=" ".join(["word"] * 13)),
    ]

    assert total_narration_duration(chunks) == pytest.approx(7.5)
    assert total_narration_duration(None) == 0.0


def _chunks(count: int) -> list[NarrationChunk]:
    return [NarrationChunk(id=f"c{i}", text=f"Sentence {i}.", index=i) for i in range(count)]


def test_generate_all_narration_continues_after_failure() -> None:
    chunks = _chunks(3)
    calls: list[str] = []

    def synthesize(chunk: NarrationChunk) -> ActionResult:
        calls.append(chunk.id)
        if chunk.id == "c1":
            return ActionResult.fail("quota exceeded")
        return ActionResult.ok({"audioUrl": PLACEHOLDER_WAV_DATA_URI})

    progress = list(generate_all_narration(chunks, synthesize))

    assert calls == ["c0", "c1", "c2"]
    assert [p.success for p in progress] == [True, False, True]
    assert progress[1].error == "quota exceeded"
    assert chunks[0].audio_url == PLACEHOLDER_WAV_DATA_URI
    assert chunks[0].duration == 1.0
    assert chunks[1].audio_url is None


def test_generate_all_narration_uses_reported_duration() -> None:
    chunks = _chunks(1)

    list(generate_all_narration(chunks, lambda c: ActionResult.ok({"audioUrl": "https://x/a.mp3", "duration": 4.2})))

    assert chunks[0].duration == 4.2


def test_generate_all_narration_stops_when_cancelled() -> None:
    chunks = _chunks(3)
    cancel = threading.Event()

    def synthesize(chunk: NarrationChunk) -> ActionResult:
        cancel.set()
        return ActionResult.ok({"audioUrl": "https://x/a.mp3", "duration": 1.0})

    progress = list(generate_all_narration(chunks, synthesize, cancel_event=cancel))

    assert len(progress) == 1
    assert chunks[1].audio_url is None


def test_generate_all_narration_skips_chunks_with_audio() -> None:
    chunks = _chunks(2)
    chunks[0] = chunks[0].model_copy(update={"audio_url": "https://x/done.mp3", "duration": 2.0})
    seen: list[str] = []

    def synthesize(chunk: NarrationChunk) -> ActionResult:
        seen.append(chunk.id)
        return ActionResult.ok({"audioUrl": "https://x/new.mp3", "duration": 1.0})

    list(generate_all_narration(chunks, synthesize))

    assert seen == ["c1"]


def test_run_sequential_reports_exceptions() -> None:
    def worker(item: int) -> ActionResult:
        if item == 2:
            raise TimeoutError("slow provider")
        return ActionResult.ok(item * 10)

    progress = list(run_sequential([1, 2, 3], worker))

    assert [(p.index, p.success, p.result) for p in progress] == [(0, True, 10), (1, False, None), (2, True, 30)]
    assert progress[1].error == "slow provider"


def test_generate_all_images() -> None:
    def generate(prompt: str) -> ActionResult:
        if prompt == "broken":
            return ActionResult.ok({})
        return ActionResult.ok({"imageUrl": f"https://x/{prompt}.png"})

    results = list(generate_all_images(["castle", "broken"], generate, chapter_number=1))

    index, image, error = results[0]
    assert index == 0 and error is None
    assert image.image_url == "https://x/castle.png"
    assert image.original_prompt == "castle"
    assert image.is_chapter_generated is True
    assert image.chapter_number == 1
    assert results[1] == (1, None, "Image generation returned no image URL.")
