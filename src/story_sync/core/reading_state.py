"""Per-frame reading state: progress, markers, comments."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

DEFAULT_MARKER_COLOR = "#FFD700"


@dataclass(frozen=True)
class UserProgress:
    """Last frame read within one story.

    Raises:
        ValueError: If ``last_frame`` falls outside ``[1, total_frames]``.
    """

    collection_id: str
    story_number: int
    last_frame: int
    total_frames: int
    last_read: datetime

    def __post_init__(self) -> None:
        if self.total_frames < 1:
            raise ValueError(f"total_frames must be >= 1, got {self.total_frames}")
        if not 1 <= self.last_frame <= self.total_frames:
            raise ValueError(
                f"last_frame {self.last_frame} outside [1, {self.total_frames}]"
            )

    @property
    def is_complete(self) -> bool:
        return self.last_frame == self.total_frames

    @property
    def fraction_read(self) -> float:
        return self.last_frame / self.total_frames


@dataclass(frozen=True)
class UserMarker:
    id: str
    collection_id: str
    story_number: int
    frame_number: int
    created_at: datetime
    note: Optional[str] = None
    color: str = DEFAULT_MARKER_COLOR


@dataclass(frozen=True)
class FrameComment:
    id: str
    collection_id: str
    story_number: int
    frame_number: int
    text: str
    created_at: datetime
    updated_at: datetime

    @property
    def is_edited(self) -> bool:
        return self.updated_at > self.created_at


@dataclass(frozen=True)
class RecentlyViewed:
    collection_id: str
    story_number: int
    title: str
    viewed_at: datetime


@dataclass(frozen=True)
class ReadingStatistics:
    """Derived counts across the whole content store."""

    downloaded_collections: int = 0
    stories: int = 0
    frames: int = 0
    favorite_stories: int = 0
    favorite_frames: int = 0
    markers: int = 0
    comments: int = 0
    stories_started: int = 0
    stories_completed: int = 0
