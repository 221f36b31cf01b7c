"""Comments Service - free-text notes attached to frames."""

from typing import List, Optional

from story_sync.core import FrameComment
from story_sync.io import DatabaseManager


class CommentsService:
    """Application service for frame comments.

    Comment text is stripped; empty or whitespace-only text is rejected with
    ``ValueError`` before anything reaches the store.
    """

    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def add_comment(
        self, collection_id, story_number: int, frame_number: int, text: str
    ) -> FrameComment:
        return self._db.add_comment(
            str(collection_id), story_number, frame_number, self._clean(text)
        )

    def update_comment(self, comment_id: str, text: str) -> Optional[FrameComment]:
        return self._db.update_comment(comment_id, self._clean(text))

    def delete_comment(self, comment_id: str) -> bool:
        return self._db.delete_comment(comment_id)

    def get_frame_comments(
        self, collection_id, story_number: int, frame_number: int
    ) -> List[FrameComment]:
        return self._db.get_frame_comments(str(collection_id), story_number, frame_number)

    def count_comments(
        self,
        collection_id,
        story_number: Optional[int] = None,
        frame_number: Optional[int] = None,
    ) -> int:
        return self._db.count_comments(str(collection_id), story_number, frame_number)

    def all_comments(self) -> List[FrameComment]:
        return self._db.list_comments()

    @staticmethod
    def _clean(text: str) -> str:
        if text is None or not text.strip():
            raise ValueError("Comment text must not be empty")
        return text.strip()
