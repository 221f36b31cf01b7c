"""Progress Service - records where the reader stopped in each story."""

from datetime import datetime, timezone
from typing import List, Optional

from story_sync.core import RecentlyViewed, UserProgress
from story_sync.io import DatabaseManager


class ProgressService:
    """Application service for reading progress.

    ``collection_id`` arguments accept a ``CollectionKey`` or its canonical
    ``owner/language/id`` string.
    """

    RECENT_LIMIT = 10

    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def record_frame_view(
        self, collection_id, story_number: int, frame_number: int, total_frames: int
    ) -> UserProgress:
        """Upsert progress, clamping ``frame_number`` into ``[1, total_frames]``.

        Raises:
            ValueError: If ``total_frames`` is below 1.
            StorageError: If the collection is not in the store.
        """
        if total_frames < 1:
            raise ValueError(f"total_frames must be >= 1, got {total_frames}")
        progress = UserProgress(
            collection_id=str(collection_id),
            story_number=story_number,
            last_frame=min(max(frame_number, 1), total_frames),
            total_frames=total_frames,
            last_read=datetime.now(timezone.utc),
        )
        return self._db.save_progress(progress)

    def get_progress(self, collection_id, story_number: int) -> Optional[UserProgress]:
        return self._db.get_progress(str(collection_id), story_number)

    def list_progress(self, collection_id=None) -> List[UserProgress]:
        return self._db.list_progress(str(collection_id) if collection_id else None)

    def get_recently_viewed(self, limit: int = RECENT_LIMIT) -> List[RecentlyViewed]:
        return self._db.list_recently_viewed(min(limit, self.RECENT_LIMIT))

    def get_last_read(self) -> Optional[UserProgress]:
        """Most recently updated progress entry across all collections."""
        progress = self._db.list_progress()
        return progress[0] if progress else None
