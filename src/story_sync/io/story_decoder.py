"""Story Decoder - turns extracted markdown story files into Story/Frame records."""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from story_sync.core import Frame, Story

logger = logging.getLogger(__name__)

STORY_FILE_RE = re.compile(r"(?:^|/)(?:content/)?(\d+)\.md$", re.IGNORECASE)
FRAME_RE = re.compile(
    r"!\[[^\]]*?\]\(([^)]+?)\)\s*([\s\S]*?)(?=(?:!\[[^\]]*?\]\([^)]+?\))|$)"
)
SOURCE_REFERENCE_RE = re.compile(r"_([^_]+)_")


@dataclass
class DecodedContent:
    stories: List[Story] = field(default_factory=list)
    frames: List[Frame] = field(default_factory=list)


class StoryDecoder:
    """Data factory for the story markdown found inside collection archives.

    A file named ``NN.md`` (optionally under ``content/``) is one story. Its
    first ``# `` heading is the title; every ``![alt](url)`` image and the
    text after it form one frame, numbered from 1 by position. A trailing
    ``_reference_`` line becomes the story's source reference.
    """

    def decode(
        self, collection_id: str, files: Iterable[Tuple[str, bytes]]
    ) -> DecodedContent:
        """Decode ``(relative_path, contents)`` pairs; non-story files are ignored."""
        content = DecodedContent()
        seen = set()
        for path, raw in sorted(files, key=lambda item: item[0]):
            match = STORY_FILE_RE.search(path.replace("\\", "/"))
            if not match:
                continue
            story_number = int(match.group(1))
            if story_number in seen:
                logger.warning("Duplicate story %s in %s: %s", story_number, collection_id, path)
                continue
            seen.add(story_number)
            text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
            story, frames = self.decode_story(collection_id, story_number, text)
            content.stories.append(story)
            content.frames.extend(frames)

        content.stories.sort(key=lambda s: s.story_number)
        return content

    def decode_story(
        self, collection_id: str, story_number: int, text: str
    ) -> Tuple[Story, List[Frame]]:
        title = ""
        lines = text.splitlines()
        if lines and lines[0].strip().startswith("# "):
            title = lines[0].strip()[2:].strip()

        source_reference, body = self._extract_source_reference(text)

        frames: List[Frame] = []
        frame_number = 0
        for match in FRAME_RE.finditer(body):
            frame_number += 1
            image_url = match.group(1).strip()
            frame_text = match.group(2).strip()
            if not image_url or not frame_text:
                logger.warning(
                    "Skipping empty frame %s in story %s of %s",
                    frame_number,
                    story_number,
                    collection_id,
                )
                continue
            frames.append(
                Frame(
                    collection_id=collection_id,
                    story_number=story_number,
                    frame_number=frame_number,
                    text=frame_text,
                    image_url=image_url,
                )
            )

        story = Story(
            collection_id=collection_id,
            story_number=story_number,
            title=title or f"Story {story_number}",
            frame_numbers=[f.frame_number for f in frames],
            source_reference=source_reference,
        )
        return story, frames

    @staticmethod
    def _extract_source_reference(text: str) -> Tuple[Optional[str], str]:
        lines = text.split("\n")
        for index in range(len(lines) - 1, -1, -1):
            line = lines[index].strip()
            if not line:
                continue
            match = SOURCE_REFERENCE_RE.search(line)
            if match is None:
                return None, text
            lines[index] = ""
            return match.group(1).strip(), "\n".join(lines).strip()
        return None, text
