"""Render a stored story to MP4 from the command line.

Usage:
  python scripts/render_story.py <story_id> <user_id> [--language es] [--output-dir out/]
  python scripts/render_story.py --import story.json <user_id>
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from storyreel.jobs import cleanup_old_jobs, create_job, render_story
from storyreel.storage import get_story, parse_story_document, save_story
from storyreel.video.utils import FFmpegNotFoundError, ensure_ffmpeg_exists


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a StoryReel story to MP4.")
    parser.add_argument("story_id", nargs="?", help="Stored story id (omit with --import).")
    parser.add_argument("user_id", help="Owner of the story.")
    parser.add_argument("--import", dest="import_path", type=Path, help="Story JSON to save before rendering.")
    parser.add_argument("--language", default="en", choices=["en", "es", "ro"])
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        ensure_ffmpeg_exists()
    except FFmpegNotFoundError as exc:
        print(f"Render failed: {exc}")
        return 1

    story_id = args.story_id
    if args.import_path is not None:
        try:
            story = parse_story_document(args.import_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            print(f"Could not read {args.import_path}: {exc}")
            return 1
        saved = save_story(story, args.user_id)
        if not saved.success:
            print(f"Could not save story: {saved.error}")
            return 1
        story_id = saved.data
    if not story_id:
        print("A story id or --import file is required.")
        return 2

    loaded = get_story(story_id, args.user_id)
    if not loaded.success:
        print(f"Could not load story {story_id}: {loaded.error}")
        return 1
    story = loaded.data

    cleanup_old_jobs()
    job = create_job(str(story.id), story.title)
    result = render_story(story, job.id, language=args.language, output_dir=args.output_dir)
    if not result.success:
        print(f"Render failed: {result.error}")
        return 1
    print(result.data)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
