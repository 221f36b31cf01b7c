"""Marker Service - coloured bookmarks on individual frames."""

from typing import List, Optional

from story_sync.core import UserMarker
from story_sync.io import DatabaseManager


class MarkerService:
    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def add_marker(
        self,
        collection_id,
        story_number: int,
        frame_number: int,
        note: Optional[str] = None,
        color: Optional[str] = None,
    ) -> UserMarker:
        note = note.strip() if note and note.strip() else None
        return self._db.add_marker(str(collection_id), story_number, frame_number, note, color)

    def delete_marker(self, marker_id: str) -> bool:
        return self._db.delete_marker(marker_id)

    def markers_for_frame(
        self, collection_id, story_number: int, frame_number: int
    ) -> List[UserMarker]:
        return self._db.list_markers_for_frame(str(collection_id), story_number, frame_number)

    def markers_for_story(self, collection_id, story_number: int) -> List[UserMarker]:
        return self._db.list_markers_for_story(str(collection_id), story_number)

    def all_markers(self) -> List[UserMarker]:
        return self._db.list_markers()
