"""Favorites Service - favourite stories and frames."""

from typing import List, Optional

from story_sync.core import Frame, Story
from story_sync.io import DatabaseManager


class FavoritesService:
    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def toggle_story(self, collection_id, story_number: int) -> Optional[bool]:
        """Flip a story's favourite flag; returns the new value, None if absent."""
        return self._db.toggle_story_favorite(str(collection_id), story_number)

    def toggle_frame(self, collection_id, story_number: int, frame_number: int) -> Optional[bool]:
        return self._db.toggle_frame_favorite(str(collection_id), story_number, frame_number)

    def favorite_stories(self) -> List[Story]:
        return self._db.list_favorite_stories()

    def favorite_frames(self) -> List[Frame]:
        return self._db.list_favorite_frames()
