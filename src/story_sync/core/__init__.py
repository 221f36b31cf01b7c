"""Domain layer - Pure entities representing collections and reading state."""

from .collection import INITIAL_VERSION, Collection, CollectionState, ImagePack, ThumbnailRef
from .collection_key import CollectionKey
from .errors import (
    DeleteError,
    DownloadError,
    ErrorKind,
    NotFoundError,
    StorageError,
    SyncError,
)
from .language import Language, LanguageStats
from .reading_state import (
    DEFAULT_MARKER_COLOR,
    FrameComment,
    ReadingStatistics,
    RecentlyViewed,
    UserMarker,
    UserProgress,
)
from .sharing import (
    SHARE_FORMAT_VERSION,
    ImportIssue,
    ImportIssueKind,
    ImportResult,
    Recommendation,
    ShareArchiveError,
    UserDataBundle,
)
from .story import Frame, Story

__all__ = [
    "INITIAL_VERSION",
    "Collection",
    "CollectionKey",
    "CollectionState",
    "ImagePack",
    "ThumbnailRef",
    "Story",
    "Frame",
    "UserProgress",
    "UserMarker",
    "FrameComment",
    "RecentlyViewed",
    "ReadingStatistics",
    "DEFAULT_MARKER_COLOR",
    "Language",
    "LanguageStats",
    "ErrorKind",
    "SyncError",
    "NotFoundError",
    "DownloadError",
    "DeleteError",
    "StorageError",
    "SHARE_FORMAT_VERSION",
    "ImportIssue",
    "ImportIssueKind",
    "ImportResult",
    "Recommendation",
    "ShareArchiveError",
    "UserDataBundle",
]
