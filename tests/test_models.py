import pytest

from storyreel.models import ActionResult, GeneratedImage, NarrationChunk, Story


def test_image_id_is_generated_when_missing() -> None:
    first = GeneratedImage(image_url="https://x/a.png")
    second = GeneratedImage.model_validate({"imageId": "", "imageUrl": "https://x/b.png"})

    assert first.image_id
    assert second.image_id
    assert first.image_id != second.image_id


def test_regenerating_caps_history() -> None:
    image = GeneratedImage(image_id="a", image_url="v0.png", original_prompt="p0")

    for version in range(1, 8):
        image = image.with_regenerated(f"v{version}.png", f"p{version}", limit=5)

    assert image.image_url == "v7.png"
    assert image.request_prompt == "p7"
    assert [entry.image_url for entry in image.history] == ["v2.png", "v3.png", "v4.png", "v5.png", "v6.png"]


def test_revert_swaps_current_version_into_history() -> None:
    image = GeneratedImage(image_id="a", image_url="v0.png", original_prompt="p0")
    image = image.with_regenerated("v1.png", "p1")

    reverted = image.reverted_to(0)

    assert reverted.image_url == "v0.png"
    assert reverted.original_prompt == "p0"
    assert [entry.image_url for entry in reverted.history] == ["v1.png"]


def test_revert_with_bad_index_raises() -> None:
    with pytest.raises(IndexError):
        GeneratedImage(image_url="v0.png").reverted_to(0)


def test_image_by_reference_prefers_stable_id() -> None:
    story = Story(
        generated_images=[
            GeneratedImage(image_id="a", image_url="a.png"),
            GeneratedImage(image_id="b", image_url="b.png"),
        ]
    )

    assert story.image_by_reference("b", 0).image_url == "b.png"
    assert story.image_by_reference("gone", 0) is None
    assert story.image_by_reference(None, 1).image_url == "b.png"
    assert story.image_by_reference(None, 9) is None
    assert story.image_by_reference(None, None) is None
    assert story.index_of_image("b") == 1


def test_chunks_for_language() -> None:
    story = Story(
        narration_chunks=[NarrationChunk(id="en")],
        spanish_narration_chunks=[NarrationChunk(id="es")],
        romanian_narration_chunks=[NarrationChunk(id="ro")],
    )

    assert story.chunks_for_language("en")[0].id == "en"
    assert story.chunks_for_language("ES")[0].id == "es"
    assert story.chunks_for_language("ro")[0].id == "ro"
    with pytest.raises(ValueError):
        story.chunks_for_language("fr")


def test_records_use_camel_case_and_skip_none() -> None:
    record = NarrationChunk(id="c1", text="Hi.", audio_url="https://x/a.mp3").to_record()

    assert record == {"id": "c1", "text": "Hi.", "index": 0, "audioUrl": "https://x/a.mp3"}


def test_action_result_constructors() -> None:
    assert ActionResult.ok(3) == ActionResult(success=True, data=3)
    assert ActionResult.fail(None).error == "Unknown error"  # type: ignore[arg-type]


def test_deleted_image_reference_does_not_shift_to_neighbour() -> None:
    story = Story(
        generated_images=[
            GeneratedImage(image_id="a", image_url="a.png"),
            GeneratedImage(image_id="b", image_url="b.png"),
        ]
    )
    story.generated_images.pop(0)

    assert story.image_by_reference("a", 0) is None
    assert story.image_by_reference("b", 1).image_url == "b.png"
