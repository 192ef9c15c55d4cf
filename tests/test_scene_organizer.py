import pytest

from storyreel.models import GeneratedImage, NarrationChunk
from storyreel.video.assets import RenderImage
from storyreel.video.scenes import (
    PLACEHOLDER_IMAGE,
    SceneCache,
    as_scene_image,
    distribute_frames,
    organize_scenes,
    scene_frame_budgets,
)


def _chunk(chunk_id: str, duration: float | None) -> NarrationChunk:
    return NarrationChunk(id=chunk_id, text=f"text {chunk_id}", duration=duration)


def test_no_valid_chunks_gives_single_fallback_scene() -> None:
    images = ["a.png", "b.png", "c.png", "d.png", "e.png"]

    scenes = organize_scenes(images, [], fps=30)

    assert len(scenes) == 1
    assert scenes[0].images == images
    assert scenes[0].duration_in_frames == 5 * 3 * 30
    assert scenes[0].image_frame_durations == [90] * 5


def test_no_images_and_no_chunks_uses_placeholder() -> None:
    scenes = organize_scenes([], [_chunk("c1", None), _chunk("c2", 0)], fps=30)

    assert len(scenes) == 1
    assert scenes[0].images == [PLACEHOLDER_IMAGE]
    assert scenes[0].duration_in_frames == 90


def test_assigned_images_stay_with_their_chunk_and_needy_chunks_share_the_rest() -> None:
    images = [
        {"imageUrl": "a.png", "chunkId": "c1"},
        {"imageUrl": "b.png", "chunkId": "c1"},
        {"imageUrl": "c.png"},
    ]
    chunks = [_chunk("c1", 2.0), _chunk("c2", 1.5)]

    scenes = organize_scenes(images, chunks, fps=30)

    assert [scene.audio_chunk.id for scene in scenes] == ["c1", "c2"]
    assert scenes[0].images == ["a.png", "b.png"]
    assert scenes[0].image_frame_durations == [30, 30]
    assert scenes[1].images == ["c.png"]
    assert scenes[1].duration_in_frames == 45


def test_unassigned_images_split_proportionally_with_remainder_first() -> None:
    images = [f"{name}.png" for name in "abcde"]
    chunks = [_chunk("c1", 1.0), _chunk("c2", 1.0), _chunk("c3", 1.0)]

    scenes = organize_scenes(images, chunks, fps=30)

    assert [scene.images for scene in scenes] == [["a.png", "b.png"], ["c.png", "d.png"], ["e.png"]]


def test_unknown_chunk_id_counts_as_unassigned() -> None:
    images = [{"imageUrl": "a.png", "chunkId": "missing"}]

    scenes = organize_scenes(images, [_chunk("c1", 1.0)], fps=30)

    assert scenes[0].images == ["a.png"]


def test_chunk_without_any_image_gets_placeholder() -> None:
    images = [{"imageUrl": "a.png", "chunkId": "c1"}]

    scenes = organize_scenes(images, [_chunk("c1", 1.0), _chunk("c2", 1.0)], fps=30)

    assert scenes[1].images == [PLACEHOLDER_IMAGE]


def test_chunks_without_duration_are_skipped() -> None:
    scenes = organize_scenes(["a.png"], [_chunk("c1", None), _chunk("c2", 1.0), _chunk("c3", 0)], fps=30)

    assert [scene.audio_chunk.id for scene in scenes] == ["c2"]


@pytest.mark.parametrize("total,count", [(10, 3), (90, 4), (7, 7), (1, 1), (100, 9)])
def test_distribute_frames_sums_to_total(total: int, count: int) -> None:
    frames = distribute_frames(total, count)

    assert len(frames) == count
    assert sum(frames) == total
    assert min(frames) >= 1
    assert max(frames) - min(frames) <= 1


def test_distribute_frames_gives_remainder_to_first_images() -> None:
    assert distribute_frames(10, 3) == [4, 3, 3]


def test_more_images_than_frames_keeps_first_images() -> None:
    images = [{"imageUrl": f"{n}.png", "chunkId": "c1"} for n in "abc"]

    scenes = organize_scenes(images, [_chunk("c1", 0.05)], fps=30)

    assert scenes[0].duration_in_frames == 2
    assert scenes[0].images == ["a.png", "b.png"]
    assert scenes[0].image_frame_durations == [1, 1]


def test_frame_budgets_use_cumulative_boundaries() -> None:
    assert scene_frame_budgets([2.5], 30) == [75]
    assert scene_frame_budgets([1.01, 1.01], 30) == [31, 30]


def test_invalid_fps_raises() -> None:
    with pytest.raises(ValueError):
        organize_scenes(["a.png"], [_chunk("c1", 1.0)], fps=0)


def test_scene_cache_returns_cached_result() -> None:
    cache = SceneCache(max_entries=4)
    chunks = [_chunk("c1", 1.0)]

    first = organize_scenes(["a.png"], chunks, fps=30, cache=cache)
    second = organize_scenes(["a.png"], chunks, fps=30, cache=cache)

    assert first is second
    assert len(cache) == 1


def test_scene_cache_key_changes_with_duration() -> None:
    cache = SceneCache(max_entries=4)

    organize_scenes(["a.png"], [_chunk("c1", 1.0)], fps=30, cache=cache)
    changed = organize_scenes(["a.png"], [_chunk("c1", 2.0)], fps=30, cache=cache)

    assert changed[0].duration_in_frames == 60
    assert len(cache) == 2


def test_scene_cache_evicts_least_recently_used() -> None:
    cache = SceneCache(max_entries=2)
    cache.put("a", [])
    cache.put("b", [])
    cache.get("a")
    cache.put("c", [])

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache


def test_as_scene_image_accepts_models() -> None:
    generated = GeneratedImage(image_url="https://x/a.png", chunk_id="c1")
    rendered = RenderImage(local_path="/tmp/a.png", original_url="https://x/a.png", chunk_id="c2")

    assert as_scene_image(generated).src == "https://x/a.png"
    assert as_scene_image(generated).chunk_id == "c1"
    assert as_scene_image(rendered).src == "/tmp/a.png"
    assert as_scene_image(rendered).chunk_id == "c2"
