"""Entities for sharing a downloaded collection as a portable archive."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .collection_key import CollectionKey
from .errors import ErrorKind, SyncError
from .reading_state import FrameComment, UserMarker, UserProgress

SHARE_FORMAT_VERSION = "1.0.0"


class ImportIssueKind(Enum):
    """Why an import was refused, or what it warned about."""

    VERSION_CONFLICT_NEWER = "version_conflict_newer"
    VERSION_CONFLICT_OLDER = "version_conflict_older"
    VERSION_INCOMPATIBLE = "version_incompatible"
    DUPLICATE_COLLECTION = "duplicate_collection"
    INVALID_MANIFEST = "invalid_manifest"
    MISSING_MANIFEST = "missing_manifest"
    CORRUPTED_DATA = "corrupted_data"
    FILE_READ_ERROR = "file_read_error"
    FILE_WRITE_ERROR = "file_write_error"

    @property
    def can_retry(self) -> bool:
        """True when importing again with ``overwrite`` would succeed."""
        return self in (
            ImportIssueKind.VERSION_CONFLICT_NEWER,
            ImportIssueKind.VERSION_CONFLICT_OLDER,
            ImportIssueKind.DUPLICATE_COLLECTION,
        )


class Recommendation(Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class ImportIssue:
    kind: ImportIssueKind
    message: str
    existing_version: Optional[str] = None
    import_version: Optional[str] = None
    recommendation: Optional[Recommendation] = None


@dataclass
class ImportResult:
    """Outcome of one import. ``skipped`` means nothing on disk changed."""

    success: bool = False
    key: Optional[CollectionKey] = None
    skipped: bool = False
    restored_user_items: int = 0
    issues: List[ImportIssue] = field(default_factory=list)


@dataclass
class UserDataBundle:
    """Reading state of one collection, detached from row ids."""

    favorite_stories: List[int] = field(default_factory=list)
    favorite_frames: List[Tuple[int, int]] = field(default_factory=list)
    progress: List[UserProgress] = field(default_factory=list)
    markers: List[UserMarker] = field(default_factory=list)
    comments: List[FrameComment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.favorite_stories
            or self.favorite_frames
            or self.progress
            or self.markers
            or self.comments
        )


class ShareArchiveError(SyncError):
    """A share archive could not be read or failed validation."""

    def __init__(self, issue: ImportIssueKind, message: str) -> None:
        super().__init__(ErrorKind.ARCHIVE_CORRUPT, message)
        self.issue = issue
