"""User Data Backup - snapshot and restore the reading state of one collection."""

import logging
from dataclasses import replace

from story_sync.core import UserDataBundle
from story_sync.io import DatabaseManager

logger = logging.getLogger(__name__)


class UserDataBackup:
    """
    Collects favourites, progress, markers and comments of a collection into a
    ``UserDataBundle`` and writes such a bundle back.

    Restoring is additive: an item already present locally is not written
    twice, so restoring the same bundle again changes nothing.
    """

    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def backup(self, collection_id) -> UserDataBundle:
        cid = str(collection_id)
        return UserDataBundle(
            favorite_stories=[
                s.story_number for s in self._db.list_favorite_stories() if s.collection_id == cid
            ],
            favorite_frames=[
                (f.story_number, f.frame_number)
                for f in self._db.list_favorite_frames()
                if f.collection_id == cid
            ],
            progress=self._db.list_progress(cid),
            markers=[m for m in self._db.list_markers() if m.collection_id == cid],
            comments=[c for c in self._db.list_comments() if c.collection_id == cid],
        )

    def restore(self, collection_id, bundle: UserDataBundle) -> int:
        """Write ``bundle`` into ``collection_id``; returns how many items were added.

        Favourites pointing at stories or frames the collection no longer has
        are skipped.

        Raises:
            StorageError: If the content store rejects a write.
        """
        cid = str(collection_id)
        restored = 0

        for story_number in bundle.favorite_stories:
            story = self._db.get_story(cid, story_number)
            if story is not None and not story.is_favorite:
                self._db.toggle_story_favorite(cid, story_number)
                restored += 1
        for story_number, frame_number in bundle.favorite_frames:
            frame = self._db.get_frame(cid, story_number, frame_number)
            if frame is not None and not frame.is_favorite:
                self._db.toggle_frame_favorite(cid, story_number, frame_number)
                restored += 1

        for progress in bundle.progress:
            current = self._db.get_progress(cid, progress.story_number)
            if current is None or current.last_read < progress.last_read:
                self._db.save_progress(replace(progress, collection_id=cid))
                restored += 1

        markers = {
            (m.story_number, m.frame_number, m.note, m.color)
            for m in self._db.list_markers()
            if m.collection_id == cid
        }
        for marker in bundle.markers:
            identity = (marker.story_number, marker.frame_number, marker.note, marker.color)
            if identity not in markers:
                self._db.add_marker(cid, *identity)
                markers.add(identity)
                restored += 1

        comments = {
            (c.story_number, c.frame_number, c.text)
            for c in self._db.list_comments()
            if c.collection_id == cid
        }
        for comment in bundle.comments:
            identity = (comment.story_number, comment.frame_number, comment.text)
            if identity not in comments:
                self._db.add_comment(cid, *identity)
                comments.add(identity)
                restored += 1

        logger.info("Restored %d reading-state items into %s", restored, cid)
        return restored
