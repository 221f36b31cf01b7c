"""Story and Frame entities - the readable content of a collection."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Frame:
    """The atomic unit of content: text plus an image reference."""

    collection_id: str
    story_number: int
    frame_number: int
    text: str
    image_url: str
    is_favorite: bool = False


@dataclass
class Story:
    """An ordered sequence of frames within a collection."""

    collection_id: str
    story_number: int
    title: str
    frame_numbers: List[int] = field(default_factory=list)
    is_favorite: bool = False
    source_reference: Optional[str] = None

    @property
    def total_frames(self) -> int:
        return len(self.frame_numbers)
