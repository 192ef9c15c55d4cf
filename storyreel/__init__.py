"""StoryReel: assemble narrated image stories into timelines and videos."""
