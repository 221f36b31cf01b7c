"""SQLite-backed content store for collections, stories and reading state."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from story_sync.core import (
    DEFAULT_MARKER_COLOR,
    Collection,
    CollectionKey,
    Frame,
    FrameComment,
    ImagePack,
    Language,
    LanguageStats,
    ReadingStatistics,
    RecentlyViewed,
    StorageError,
    Story,
    ThumbnailRef,
    UserMarker,
    UserProgress,
)

logger = logging.getLogger(__name__)

# Tables holding rows scoped to a collection, children first.
COLLECTION_SCOPED_TABLES = (
    "frame_comments",
    "user_markers",
    "user_progress",
    "frames",
    "stories",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: Optional[str]) -> datetime:
    if not value:
        return _utcnow()
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DatabaseManager:
    """Owns the SQLite connection, schema, and all structured persistence.

    One instance is opened per engine and shared by every component. Single
    row writes each run in their own transaction; multi-row operations
    (collection delete, content replacement) run inside one transaction.

    Reads never raise for missing rows. A ``sqlite3.Error`` during a read is
    logged and degrades to an empty result; during a write it is raised as
    ``StorageError``.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(str(db_path))
        self.connection.row_factory = sqlite3.Row
        self.connection.execute("PRAGMA foreign_keys = ON;")

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        cur = self.connection.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS languages (
                code TEXT PRIMARY KEY,
                native_name TEXT NOT NULL,
                english_name TEXT NOT NULL,
                direction TEXT NOT NULL DEFAULT 'ltr',
                is_gateway INTEGER NOT NULL DEFAULT 0,
                region TEXT NOT NULL DEFAULT '',
                home_country TEXT NOT NULL DEFAULT '',
                country_codes TEXT NOT NULL DEFAULT '[]',
                alternate_names TEXT NOT NULL DEFAULT '[]',
                last_updated TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS collections (
                id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                language TEXT NOT NULL,
                collection_id TEXT NOT NULL,
                display_name TEXT NOT NULL,
                description TEXT,
                version TEXT NOT NULL,
                last_updated TEXT NOT NULL,
                target_audience TEXT,
                image_pack TEXT,
                is_downloaded INTEGER NOT NULL DEFAULT 0,
                thumbnail_url TEXT,
                thumbnail_path TEXT,
                owner_full_name TEXT,
                subject TEXT,
                contents_url TEXT,
                UNIQUE(owner, language, collection_id)
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stories (
                collection_id TEXT NOT NULL,
                story_number INTEGER NOT NULL,
                title TEXT NOT NULL,
                is_favorite INTEGER NOT NULL DEFAULT 0,
                source_reference TEXT,

                PRIMARY KEY (collection_id, story_number),
                FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS frames (
                collection_id TEXT NOT NULL,
                story_number INTEGER NOT NULL,
                frame_number INTEGER NOT NULL,
                text TEXT NOT NULL,
                image_url TEXT NOT NULL,
                is_favorite INTEGER NOT NULL DEFAULT 0,

                PRIMARY KEY (collection_id, story_number, frame_number),
                FOREIGN KEY(collection_id, story_number)
                    REFERENCES stories(collection_id, story_number) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS user_progress (
                collection_id TEXT NOT NULL,
                story_number INTEGER NOT NULL,
                last_frame INTEGER NOT NULL,
                total_frames INTEGER NOT NULL,
                last_read TEXT NOT NULL,

                PRIMARY KEY (collection_id, story_number),
                FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE,
                CHECK (last_frame >= 1 AND last_frame <= total_frames)
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS user_markers (
                id TEXT PRIMARY KEY,
                collection_id TEXT NOT NULL,
                story_number INTEGER NOT NULL,
                frame_number INTEGER NOT NULL,
                note TEXT,
                color TEXT NOT NULL,
                created_at TEXT NOT NULL,

                FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS frame_comments (
                id TEXT PRIMARY KEY,
                collection_id TEXT NOT NULL,
                story_number INTEGER NOT NULL,
                frame_number INTEGER NOT NULL,
                comment TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,

                FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_collections_language ON collections(language);"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_frames_story ON frames(collection_id, story_number);"
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_markers_frame
            ON user_markers(collection_id, story_number, frame_number);
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_comments_frame
            ON frame_comments(collection_id, story_number, frame_number);
            """
        )
        self.connection.commit()

    def close(self) -> None:
        self.connection.close()

    # ------------------------------------------------------------------
    # Languages

    def save_language(self, language: Language) -> Language:
        self._write(
            """
            INSERT INTO languages (
                code, native_name, english_name, direction, is_gateway,
                region, home_country, country_codes, alternate_names, last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(code) DO UPDATE SET
                native_name = excluded.native_name,
                english_name = excluded.english_name,
                direction = excluded.direction,
                is_gateway = excluded.is_gateway,
                region = excluded.region,
                home_country = excluded.home_country,
                country_codes = excluded.country_codes,
                alternate_names = excluded.alternate_names,
                last_updated = excluded.last_updated
            """,
            (
                language.code,
                language.native_name,
                language.english_name,
                language.direction or "ltr",
                int(language.is_gateway),
                language.region or "",
                language.home_country or "",
                json.dumps(list(language.country_codes)),
                json.dumps(list(language.alternate_names)),
                _to_text(_utcnow()),
            ),
            f"save language {language.code}",
        )
        return self.get_language(language.code) or language

    def get_language(self, code: str) -> Optional[Language]:
        rows = self._read(
            self._LANGUAGE_SELECT + " WHERE l.code = ?", (code,), "get language"
        )
        return self._row_to_language(rows[0]) if rows else None

    def list_languages(self) -> List[Language]:
        rows = self._read(
            self._LANGUAGE_SELECT + " ORDER BY l.native_name ASC", (), "list languages"
        )
        return [self._row_to_language(row) for row in rows]

    def list_languages_with_collections(self) -> List[Language]:
        rows = self._read(
            self._LANGUAGE_SELECT
            + """
            WHERE EXISTS (SELECT 1 FROM collections c WHERE c.language = l.code)
            ORDER BY l.native_name ASC
            """,
            (),
            "list languages with collections",
        )
        return [self._row_to_language(row) for row in rows]

    def list_gateway_languages(self) -> List[Language]:
        rows = self._read(
            self._LANGUAGE_SELECT + " WHERE l.is_gateway = 1 ORDER BY l.native_name ASC",
            (),
            "list gateway languages",
        )
        return [self._row_to_language(row) for row in rows]

    def search_languages(self, query: str) -> List[Language]:
        term = f"%{(query or '').strip().lower()}%"
        rows = self._read(
            self._LANGUAGE_SELECT
            + """
            WHERE lower(l.native_name) LIKE ?
               OR lower(l.english_name) LIKE ?
               OR lower(l.code) LIKE ?
            ORDER BY l.native_name ASC
            """,
            (term, term, term),
            "search languages",
        )
        return [self._row_to_language(row) for row in rows]

    def delete_language(self, code: str) -> None:
        self._write("DELETE FROM languages WHERE code = ?", (code,), f"delete language {code}")

    def get_language_stats(self) -> LanguageStats:
        total = self._count("SELECT COUNT(*) FROM languages")
        with_collections = self._count(
            """
            SELECT COUNT(*) FROM languages l
            WHERE EXISTS (SELECT 1 FROM collections c WHERE c.language = l.code)
            """
        )
        gateway = self._count("SELECT COUNT(*) FROM languages WHERE is_gateway = 1")
        rtl = self._count("SELECT COUNT(*) FROM languages WHERE direction = 'rtl'")
        return LanguageStats(
            total=total,
            with_collections=with_collections,
            gateway_languages=gateway,
            rtl_languages=rtl,
        )

    # ------------------------------------------------------------------
    # Collections

    def save_collection(self, collection: Collection) -> Collection:
        image_pack = collection.image_pack
        self._write(
            """
            INSERT INTO collections (
                id, owner, language, collection_id, display_name, description,
                version, last_updated, target_audience, image_pack, is_downloaded,
                thumbnail_url, thumbnail_path, owner_full_name, subject, contents_url
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                display_name = excluded.display_name,
                description = excluded.description,
                version = excluded.version,
                last_updated = excluded.last_updated,
                target_audience = excluded.target_audience,
                image_pack = excluded.image_pack,
                is_downloaded = excluded.is_downloaded,
                thumbnail_url = excluded.thumbnail_url,
                thumbnail_path = excluded.thumbnail_path,
                owner_full_name = excluded.owner_full_name,
                subject = excluded.subject,
                contents_url = excluded.contents_url
            """,
            (
                collection.store_id,
                collection.owner,
                collection.language,
                collection.collection_id,
                collection.display_name,
                collection.description,
                collection.version,
                _to_text(collection.last_updated),
                collection.target_audience,
                json.dumps(
                    {"id": image_pack.id, "version": image_pack.version, "url": image_pack.url}
                )
                if image_pack
                else None,
                int(collection.is_downloaded),
                collection.thumbnail.remote_url,
                str(collection.thumbnail.local_path) if collection.thumbnail.local_path else None,
                collection.owner_full_name,
                collection.subject,
                collection.contents_url,
            ),
            f"save collection {collection.store_id}",
        )
        return self.get_collection(collection.key) or collection

    def get_collection(self, key: CollectionKey) -> Optional[Collection]:
        rows = self._read(
            "SELECT * FROM collections WHERE id = ?", (str(key),), "get collection"
        )
        return self._row_to_collection(rows[0]) if rows else None

    def list_collections(self) -> List[Collection]:
        rows = self._read(
            "SELECT * FROM collections ORDER BY display_name ASC", (), "list collections"
        )
        return [self._row_to_collection(row) for row in rows]

    def list_collections_by_language(self, language: str) -> List[Collection]:
        rows = self._read(
            "SELECT * FROM collections WHERE language = ? ORDER BY display_name ASC",
            (language,),
            "list collections by language",
        )
        return [self._row_to_collection(row) for row in rows]

    def list_downloaded_collections(self) -> List[Collection]:
        rows = self._read(
            "SELECT * FROM collections WHERE is_downloaded = 1 ORDER BY display_name ASC",
            (),
            "list downloaded collections",
        )
        return [self._row_to_collection(row) for row in rows]

    def mark_collection_downloaded(self, key: CollectionKey, is_downloaded: bool) -> None:
        self._write(
            "UPDATE collections SET is_downloaded = ? WHERE id = ?",
            (int(is_downloaded), str(key)),
            f"mark collection {key}",
        )

    def update_thumbnail_path(self, key: CollectionKey, local_path: Optional[Path]) -> None:
        self._write(
            "UPDATE collections SET thumbnail_path = ? WHERE id = ?",
            (str(local_path) if local_path else None, str(key)),
            f"update thumbnail for {key}",
        )

    def delete_collection(self, key: CollectionKey) -> Dict[str, int]:
        """Delete a collection and every row scoped to it in one transaction.

        Returns:
            Number of rows removed per table (including ``collections``).
        """
        collection_id = str(key)
        removed: Dict[str, int] = {}
        try:
            with self.connection:
                for table in COLLECTION_SCOPED_TABLES:
                    cur = self.connection.execute(
                        f"DELETE FROM {table} WHERE collection_id = ?", (collection_id,)
                    )
                    removed[table] = cur.rowcount
                cur = self.connection.execute(
                    "DELETE FROM collections WHERE id = ?", (collection_id,)
                )
                removed["collections"] = cur.rowcount
        except sqlite3.Error as e:
            logger.error("Failed to delete collection %s: %s", collection_id, e)
            raise StorageError(f"Failed to delete collection {collection_id}: {e}") from e
        return removed

    # ------------------------------------------------------------------
    # Stories and frames

    def replace_collection_content(
        self, key: CollectionKey, stories: Sequence[Story], frames: Sequence[Frame]
    ) -> None:
        """Swap a collection's stories and frames in a single transaction.

        Favourite flags survive for story/frame identities present before and
        after the swap.
        """
        collection_id = str(key)
        try:
            with self.connection:
                fav_stories = {
                    row[0]
                    for row in self.connection.execute(
                        "SELECT story_number FROM stories WHERE collection_id = ? AND is_favorite = 1",
                        (collection_id,),
                    )
                }
                fav_frames = {
                    (row[0], row[1])
                    for row in self.connection.execute(
                        """
                        SELECT story_number, frame_number FROM frames
                        WHERE collection_id = ? AND is_favorite = 1
                        """,
                        (collection_id,),
                    )
                }
                self.connection.execute(
                    "DELETE FROM frames WHERE collection_id = ?", (collection_id,)
                )
                self.connection.execute(
                    "DELETE FROM stories WHERE collection_id = ?", (collection_id,)
                )
                self.connection.executemany(
                    """
                    INSERT INTO stories (
                        collection_id, story_number, title, is_favorite, source_reference
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            collection_id,
                            s.story_number,
                            s.title,
                            int(s.is_favorite or s.story_number in fav_stories),
                            s.source_reference,
                        )
                        for s in stories
                    ],
                )
                self.connection.executemany(
                    """
                    INSERT INTO frames (
                        collection_id, story_number, frame_number, text, image_url, is_favorite
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            collection_id,
                            f.story_number,
                            f.frame_number,
                            f.text,
                            f.image_url,
                            int(f.is_favorite or (f.story_number, f.frame_number) in fav_frames),
                        )
                        for f in frames
                    ],
                )
        except sqlite3.Error as e:
            logger.error("Failed to store content for %s: %s", collection_id, e)
            raise StorageError(f"Failed to store content for {collection_id}: {e}") from e

    def save_story(self, story: Story) -> None:
        self._write(
            """
            INSERT INTO stories (collection_id, story_number, title, is_favorite, source_reference)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(collection_id, story_number) DO UPDATE SET
                title = excluded.title,
                is_favorite = excluded.is_favorite,
                source_reference = excluded.source_reference
            """,
            (
                story.collection_id,
                story.story_number,
                story.title,
                int(story.is_favorite),
                story.source_reference,
            ),
            f"save story {story.collection_id}#{story.story_number}",
        )

    def get_story(self, collection_id: str, story_number: int) -> Optional[Story]:
        rows = self._read(
            "SELECT * FROM stories WHERE collection_id = ? AND story_number = ?",
            (collection_id, story_number),
            "get story",
        )
        if not rows:
            return None
        return self._row_to_story(rows[0], self._frame_numbers(collection_id, story_number))

    def list_stories(self, collection_id: str) -> List[Story]:
        rows = self._read(
            "SELECT * FROM stories WHERE collection_id = ? ORDER BY story_number ASC",
            (collection_id,),
            "list stories",
        )
        return [
            self._row_to_story(row, self._frame_numbers(collection_id, row["story_number"]))
            for row in rows
        ]

    def save_frame(self, frame: Frame) -> None:
        self._write(
            """
            INSERT INTO frames (
                collection_id, story_number, frame_number, text, image_url, is_favorite
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(collection_id, story_number, frame_number) DO UPDATE SET
                text = excluded.text,
                image_url = excluded.image_url,
                is_favorite = excluded.is_favorite
            """,
            (
                frame.collection_id,
                frame.story_number,
                frame.frame_number,
                frame.text,
                frame.image_url,
                int(frame.is_favorite),
            ),
            f"save frame {frame.collection_id}#{frame.story_number}.{frame.frame_number}",
        )

    def get_frame(
        self, collection_id: str, story_number: int, frame_number: int
    ) -> Optional[Frame]:
        rows = self._read(
            """
            SELECT * FROM frames
            WHERE collection_id = ? AND story_number = ? AND frame_number = ?
            """,
            (collection_id, story_number, frame_number),
            "get frame",
        )
        return self._row_to_frame(rows[0]) if rows else None

    def list_frames(self, collection_id: str, story_number: int) -> List[Frame]:
        rows = self._read(
            """
            SELECT * FROM frames
            WHERE collection_id = ? AND story_number = ?
            ORDER BY frame_number ASC
            """,
            (collection_id, story_number),
            "list frames",
        )
        return [self._row_to_frame(row) for row in rows]

    def toggle_story_favorite(self, collection_id: str, story_number: int) -> Optional[bool]:
        """Flip a story's favourite flag; returns the new value or None if absent."""
        story = self.get_story(collection_id, story_number)
        if story is None:
            return None
        new_value = not story.is_favorite
        self._write(
            "UPDATE stories SET is_favorite = ? WHERE collection_id = ? AND story_number = ?",
            (int(new_value), collection_id, story_number),
            "toggle story favorite",
        )
        return new_value

    def toggle_frame_favorite(
        self, collection_id: str, story_number: int, frame_number: int
    ) -> Optional[bool]:
        frame = self.get_frame(collection_id, story_number, frame_number)
        if frame is None:
            return None
        new_value = not frame.is_favorite
        self._write(
            """
            UPDATE frames SET is_favorite = ?
            WHERE collection_id = ? AND story_number = ? AND frame_number = ?
            """,
            (int(new_value), collection_id, story_number, frame_number),
            "toggle frame favorite",
        )
        return new_value

    def list_favorite_stories(self) -> List[Story]:
        rows = self._read(
            """
            SELECT * FROM stories WHERE is_favorite = 1
            ORDER BY collection_id ASC, story_number ASC
            """,
            (),
            "list favorite stories",
        )
        return [
            self._row_to_story(
                row, self._frame_numbers(row["collection_id"], row["story_number"])
            )
            for row in rows
        ]

    def list_favorite_frames(self) -> List[Frame]:
        rows = self._read(
            """
            SELECT * FROM frames WHERE is_favorite = 1
            ORDER BY collection_id ASC, story_number ASC, frame_number ASC
            """,
            (),
            "list favorite frames",
        )
        return [self._row_to_frame(row) for row in rows]

    def search_frames(self, query: str, collection_id: Optional[str] = None) -> List[Frame]:
        if not query or not query.strip():
            return []
        term = f"%{query.strip()}%"
        sql = "SELECT * FROM frames WHERE text LIKE ?"
        params: Tuple[Any, ...] = (term,)
        if collection_id:
            sql += " AND collection_id = ?"
            params = (term, collection_id)
        sql += " ORDER BY collection_id ASC, story_number ASC, frame_number ASC"
        return [self._row_to_frame(row) for row in self._read(sql, params, "search frames")]

    # ------------------------------------------------------------------
    # Progress

    def save_progress(self, progress: UserProgress) -> UserProgress:
        self._write(
            """
            INSERT INTO user_progress (
                collection_id, story_number, last_frame, total_frames, last_read
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(collection_id, story_number) DO UPDATE SET
                last_frame = excluded.last_frame,
                total_frames = excluded.total_frames,
                last_read = excluded.last_read
            """,
            (
                progress.collection_id,
                progress.story_number,
                progress.last_frame,
                progress.total_frames,
                _to_text(progress.last_read),
            ),
            f"save progress {progress.collection_id}#{progress.story_number}",
        )
        return progress

    def get_progress(self, collection_id: str, story_number: int) -> Optional[UserProgress]:
        rows = self._read(
            "SELECT * FROM user_progress WHERE collection_id = ? AND story_number = ?",
            (collection_id, story_number),
            "get progress",
        )
        return self._row_to_progress(rows[0]) if rows else None

    def list_progress(self, collection_id: Optional[str] = None) -> List[UserProgress]:
        if collection_id:
            rows = self._read(
                """
                SELECT * FROM user_progress WHERE collection_id = ?
                ORDER BY last_read DESC
                """,
                (collection_id,),
                "list progress",
            )
        else:
            rows = self._read(
                "SELECT * FROM user_progress ORDER BY last_read DESC", (), "list progress"
            )
        return [self._row_to_progress(row) for row in rows]

    def list_recently_viewed(self, limit: int = 10) -> List[RecentlyViewed]:
        rows = self._read(
            """
            SELECT p.collection_id, p.story_number, p.last_read, s.title
            FROM user_progress p
            LEFT JOIN stories s
                ON s.collection_id = p.collection_id AND s.story_number = p.story_number
            ORDER BY p.last_read DESC
            LIMIT ?
            """,
            (limit,),
            "list recently viewed",
        )
        return [
            RecentlyViewed(
                collection_id=row["collection_id"],
                story_number=row["story_number"],
                title=row["title"] or f"Story {row['story_number']}",
                viewed_at=_from_text(row["last_read"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Markers

    def add_marker(
        self,
        collection_id: str,
        story_number: int,
        frame_number: int,
        note: Optional[str] = None,
        color: Optional[str] = None,
    ) -> UserMarker:
        marker = UserMarker(
            id=uuid.uuid4().hex,
            collection_id=collection_id,
            story_number=story_number,
            frame_number=frame_number,
            created_at=_utcnow(),
            note=note,
            color=color or DEFAULT_MARKER_COLOR,
        )
        self._write(
            """
            INSERT INTO user_markers (
                id, collection_id, story_number, frame_number, note, color, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                marker.id,
                marker.collection_id,
                marker.story_number,
                marker.frame_number,
                marker.note,
                marker.color,
                _to_text(marker.created_at),
            ),
            f"add marker on {collection_id}#{story_number}.{frame_number}",
        )
        return marker

    def get_marker(self, marker_id: str) -> Optional[UserMarker]:
        rows = self._read("SELECT * FROM user_markers WHERE id = ?", (marker_id,), "get marker")
        return self._row_to_marker(rows[0]) if rows else None

    def delete_marker(self, marker_id: str) -> bool:
        return (
            self._write(
                "DELETE FROM user_markers WHERE id = ?", (marker_id,), f"delete marker {marker_id}"
            )
            > 0
        )

    def list_markers_for_frame(
        self, collection_id: str, story_number: int, frame_number: int
    ) -> List[UserMarker]:
        rows = self._read(
            """
            SELECT * FROM user_markers
            WHERE collection_id = ? AND story_number = ? AND frame_number = ?
            ORDER BY created_at DESC
            """,
            (collection_id, story_number, frame_number),
            "list markers for frame",
        )
        return [self._row_to_marker(row) for row in rows]

    def list_markers_for_story(self, collection_id: str, story_number: int) -> List[UserMarker]:
        rows = self._read(
            """
            SELECT * FROM user_markers
            WHERE collection_id = ? AND story_number = ?
            ORDER BY frame_number ASC, created_at ASC
            """,
            (collection_id, story_number),
            "list markers for story",
        )
        return [self._row_to_marker(row) for row in rows]

    def list_markers(self) -> List[UserMarker]:
        rows = self._read(
            "SELECT * FROM user_markers ORDER BY created_at DESC", (), "list markers"
        )
        return [self._row_to_marker(row) for row in rows]

    # ------------------------------------------------------------------
    # Comments

    def add_comment(
        self, collection_id: str, story_number: int, frame_number: int, text: str
    ) -> FrameComment:
        now = _utcnow()
        comment = FrameComment(
            id=uuid.uuid4().hex,
            collection_id=collection_id,
            story_number=story_number,
            frame_number=frame_number,
            text=text,
            created_at=now,
            updated_at=now,
        )
        self._write(
            """
            INSERT INTO frame_comments (
                id, collection_id, story_number, frame_number, comment, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                comment.id,
                collection_id,
                story_number,
                frame_number,
                text,
                _to_text(now),
                _to_text(now),
            ),
            f"add comment on {collection_id}#{story_number}.{frame_number}",
        )
        return comment

    def get_comment(self, comment_id: str) -> Optional[FrameComment]:
        rows = self._read(
            "SELECT * FROM frame_comments WHERE id = ?", (comment_id,), "get comment"
        )
        return self._row_to_comment(rows[0]) if rows else None

    def update_comment(self, comment_id: str, text: str) -> Optional[FrameComment]:
        existing = self.get_comment(comment_id)
        if existing is None:
            return None
        # updated_at must differ from created_at so edits stay detectable
        updated_at = max(_utcnow(), existing.created_at + timedelta(microseconds=1))
        self._write(
            "UPDATE frame_comments SET comment = ?, updated_at = ? WHERE id = ?",
            (text, _to_text(updated_at), comment_id),
            f"update comment {comment_id}",
        )
        return self.get_comment(comment_id)

    def delete_comment(self, comment_id: str) -> bool:
        return (
            self._write(
                "DELETE FROM frame_comments WHERE id = ?",
                (comment_id,),
                f"delete comment {comment_id}",
            )
            > 0
        )

    def get_frame_comments(
        self, collection_id: str, story_number: int, frame_number: int
    ) -> List[FrameComment]:
        rows = self._read(
            """
            SELECT * FROM frame_comments
            WHERE collection_id = ? AND story_number = ? AND frame_number = ?
            ORDER BY created_at DESC
            """,
            (collection_id, story_number, frame_number),
            "get frame comments",
        )
        return [self._row_to_comment(row) for row in rows]

    def list_comments(self) -> List[FrameComment]:
        rows = self._read(
            "SELECT * FROM frame_comments ORDER BY created_at DESC", (), "list comments"
        )
        return [self._row_to_comment(row) for row in rows]

    def count_comments(
        self,
        collection_id: str,
        story_number: Optional[int] = None,
        frame_number: Optional[int] = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM frame_comments WHERE collection_id = ?"
        params: List[Any] = [collection_id]
        if story_number is not None:
            sql += " AND story_number = ?"
            params.append(story_number)
        if frame_number is not None:
            sql += " AND frame_number = ?"
            params.append(frame_number)
        return self._count(sql, tuple(params))

    # ------------------------------------------------------------------
    # Statistics

    def get_statistics(self) -> ReadingStatistics:
        return ReadingStatistics(
            downloaded_collections=self._count(
                "SELECT COUNT(*) FROM collections WHERE is_downloaded = 1"
            ),
            stories=self._count("SELECT COUNT(*) FROM stories"),
            frames=self._count("SELECT COUNT(*) FROM frames"),
            favorite_stories=self._count("SELECT COUNT(*) FROM stories WHERE is_favorite = 1"),
            favorite_frames=self._count("SELECT COUNT(*) FROM frames WHERE is_favorite = 1"),
            markers=self._count("SELECT COUNT(*) FROM user_markers"),
            comments=self._count("SELECT COUNT(*) FROM frame_comments"),
            stories_started=self._count("SELECT COUNT(*) FROM user_progress"),
            stories_completed=self._count(
                "SELECT COUNT(*) FROM user_progress WHERE last_frame = total_frames"
            ),
        )

    # ------------------------------------------------------------------
    # Helpers

    _LANGUAGE_SELECT = """
        SELECT l.*,
            EXISTS (SELECT 1 FROM collections c WHERE c.language = l.code) AS has_collections
        FROM languages l
    """

    def _read(self, sql: str, params: Iterable[Any], action: str) -> List[sqlite3.Row]:
        try:
            cur = self.connection.cursor()
            cur.execute(sql, tuple(params))
            return cur.fetchall()
        except sqlite3.Error as e:
            logger.warning("Content store read failed (%s): %s", action, e)
            return []

    def _count(self, sql: str, params: Iterable[Any] = ()) -> int:
        rows = self._read(sql, params, "count")
        return int(rows[0][0]) if rows else 0

    def _write(self, sql: str, params: Iterable[Any], action: str) -> int:
        try:
            with self.connection:
                cur = self.connection.execute(sql, tuple(params))
                return cur.rowcount
        except sqlite3.Error as e:
            logger.error("Content store write failed (%s): %s", action, e)
            raise StorageError(f"Failed to {action}: {e}") from e

    def _frame_numbers(self, collection_id: str, story_number: int) -> List[int]:
        rows = self._read(
            """
            SELECT frame_number FROM frames
            WHERE collection_id = ? AND story_number = ?
            ORDER BY frame_number ASC
            """,
            (collection_id, story_number),
            "list frame numbers",
        )
        return [row[0] for row in rows]

    @staticmethod
    def _row_to_language(row: sqlite3.Row) -> Language:
        return Language(
            code=row["code"],
            native_name=row["native_name"],
            english_name=row["english_name"],
            direction=row["direction"],
            is_gateway=bool(row["is_gateway"]),
            region=row["region"],
            home_country=row["home_country"],
            country_codes=json.loads(row["country_codes"] or "[]"),
            alternate_names=json.loads(row["alternate_names"] or "[]"),
            has_local_collections=bool(row["has_collections"]),
        )

    @staticmethod
    def _row_to_collection(row: sqlite3.Row) -> Collection:
        pack_raw = row["image_pack"]
        image_pack = None
        if pack_raw:
            pack = json.loads(pack_raw)
            image_pack = ImagePack(id=pack["id"], version=pack["version"], url=pack["url"])
        thumb_path = row["thumbnail_path"]
        return Collection(
            key=CollectionKey(row["owner"], row["language"], row["collection_id"]),
            display_name=row["display_name"],
            version=row["version"],
            description=row["description"],
            last_updated=_from_text(row["last_updated"]),
            target_audience=row["target_audience"],
            image_pack=image_pack,
            is_downloaded=bool(row["is_downloaded"]),
            thumbnail=ThumbnailRef(
                remote_url=row["thumbnail_url"],
                local_path=Path(thumb_path) if thumb_path else None,
            ),
            owner_full_name=row["owner_full_name"],
            subject=row["subject"],
            contents_url=row["contents_url"],
        )

    @staticmethod
    def _row_to_story(row: sqlite3.Row, frame_numbers: List[int]) -> Story:
        return Story(
            collection_id=row["collection_id"],
            story_number=row["story_number"],
            title=row["title"],
            frame_numbers=frame_numbers,
            is_favorite=bool(row["is_favorite"]),
            source_reference=row["source_reference"],
        )

    @staticmethod
    def _row_to_frame(row: sqlite3.Row) -> Frame:
        return Frame(
            collection_id=row["collection_id"],
            story_number=row["story_number"],
            frame_number=row["frame_number"],
            text=row["text"],
            image_url=row["image_url"],
            is_favorite=bool(row["is_favorite"]),
        )

    @staticmethod
    def _row_to_progress(row: sqlite3.Row) -> UserProgress:
        return UserProgress(
            collection_id=row["collection_id"],
            story_number=row["story_number"],
            last_frame=row["last_frame"],
            total_frames=row["total_frames"],
            last_read=_from_text(row["last_read"]),
        )

    @staticmethod
    def _row_to_marker(row: sqlite3.Row) -> UserMarker:
        return UserMarker(
            id=row["id"],
            collection_id=row["collection_id"],
            story_number=row["story_number"],
            frame_number=row["frame_number"],
            created_at=_from_text(row["created_at"]),
            note=row["note"],
            color=row["color"],
        )

    @staticmethod
    def _row_to_comment(row: sqlite3.Row) -> FrameComment:
        return FrameComment(
            id=row["id"],
            collection_id=row["collection_id"],
            story_number=row["story_number"],
            frame_number=row["frame_number"],
            text=row["comment"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
        )
