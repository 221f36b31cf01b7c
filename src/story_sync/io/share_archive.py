"""Share Archive - a portable ZIP of one collection and its reading state.

Layout::

    manifest.json
    content/01.md
    content/02.md
    content/thumbnail.jpg      (only when a preview is cached)

Story files are regenerated from the content store in the same markdown the
catalog publishes, so importing one goes through the regular decoder. The
manifest records a SHA-256 over every ``content/`` entry; an archive whose
content does not match it is refused.
"""

import hashlib
import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from story_sync import __version__
from story_sync.core import (
    DEFAULT_MARKER_COLOR,
    INITIAL_VERSION,
    SHARE_FORMAT_VERSION,
    Collection,
    CollectionKey,
    Frame,
    FrameComment,
    ImagePack,
    ImportIssueKind,
    Language,
    ShareArchiveError,
    Story,
    ThumbnailRef,
    UserDataBundle,
    UserMarker,
    UserProgress,
)

logger = logging.getLogger(__name__)

APP_NAME = "story-sync"
MANIFEST_NAME = "manifest.json"
CONTENT_PREFIX = "content/"
THUMBNAIL_NAME = "content/thumbnail.jpg"
IMAGE_ALT = "OBS Image"


def render_story(story: Story, frames: Sequence[Frame]) -> str:
    """Markdown for one story, readable by ``StoryDecoder``."""
    parts = [f"# {story.title}"]
    for frame in sorted(frames, key=lambda f: f.frame_number):
        parts.append(f"![{IMAGE_ALT}]({frame.image_url})")
        parts.append(frame.text)
    if story.source_reference:
        parts.append(f"_{story.source_reference}_")
    return "\n\n".join(parts) + "\n"


def story_file_name(story_number: int) -> str:
    return f"{CONTENT_PREFIX}{story_number:02d}.md"


def is_story_entry(name: str) -> bool:
    """Entries installed into the content directory on import."""
    return name.startswith(CONTENT_PREFIX) and name != THUMBNAIL_NAME


def content_checksum(files: Dict[str, bytes]) -> str:
    digest = hashlib.sha256()
    for name in sorted(files):
        digest.update(name.encode("utf-8"))
        digest.update(b"\0")
        digest.update(files[name])
        digest.update(b"\0")
    return digest.hexdigest()


@dataclass
class ShareManifest:
    collection: Collection
    story_count: int
    frame_count: int
    checksum: str
    format_version: str = SHARE_FORMAT_VERSION
    app_name: str = APP_NAME
    app_version: str = __version__
    exported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    language: Optional[Language] = None
    user_data: Optional[UserDataBundle] = None


@dataclass
class SharedCollection:
    """A validated share archive, ready to install."""

    manifest: ShareManifest
    payload: bytes
    thumbnail: Optional[bytes] = None


class ShareArchive:
    """Builds and reads share archives. Pure in-memory; no filesystem access."""

    def build(
        self,
        collection: Collection,
        stories: Sequence[Story],
        frames: Sequence[Frame],
        language: Optional[Language] = None,
        thumbnail: Optional[bytes] = None,
        user_data: Optional[UserDataBundle] = None,
    ) -> bytes:
        by_story: Dict[int, List[Frame]] = {}
        for frame in frames:
            by_story.setdefault(frame.story_number, []).append(frame)

        files = {
            story_file_name(story.story_number): render_story(
                story, by_story.get(story.story_number, [])
            ).encode("utf-8")
            for story in stories
        }
        if thumbnail:
            files[THUMBNAIL_NAME] = thumbnail

        manifest = ShareManifest(
            collection=collection,
            story_count=len(stories),
            frame_count=len(frames),
            checksum=content_checksum(files),
            language=language,
            user_data=user_data,
        )
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(MANIFEST_NAME, json.dumps(self.manifest_to_json(manifest), indent=2))
            for name in sorted(files):
                archive.writestr(name, files[name])
        return buffer.getvalue()

    def read(self, payload: bytes, skip_version_check: bool = False) -> SharedCollection:
        """Open and validate a share archive.

        Raises:
            ShareArchiveError: With the matching ``ImportIssueKind``.
        """
        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except (zipfile.BadZipFile, ValueError) as e:
            raise ShareArchiveError(ImportIssueKind.CORRUPTED_DATA, f"Not a zip archive: {e}") from e

        with archive:
            names = set(archive.namelist())
            if MANIFEST_NAME not in names:
                raise ShareArchiveError(ImportIssueKind.MISSING_MANIFEST, "Archive has no manifest.json")
            try:
                raw_manifest = json.loads(archive.read(MANIFEST_NAME))
                files = {
                    name: archive.read(name)
                    for name in names
                    if name.startswith(CONTENT_PREFIX) and not name.endswith("/")
                }
            except ValueError as e:
                raise ShareArchiveError(
                    ImportIssueKind.INVALID_MANIFEST, f"Unreadable manifest.json: {e}"
                ) from e
            except (zipfile.BadZipFile, OSError, RuntimeError) as e:
                raise ShareArchiveError(ImportIssueKind.CORRUPTED_DATA, f"Unreadable entry: {e}") from e

        manifest = self.manifest_from_json(raw_manifest)
        if not skip_version_check and not self.is_compatible(manifest.format_version):
            raise ShareArchiveError(
                ImportIssueKind.VERSION_INCOMPATIBLE,
                f"Unsupported share format {manifest.format_version}",
            )
        if content_checksum(files) != manifest.checksum:
            raise ShareArchiveError(
                ImportIssueKind.CORRUPTED_DATA, "Archive content does not match its checksum"
            )
        if not any(is_story_entry(name) for name in files):
            raise ShareArchiveError(ImportIssueKind.CORRUPTED_DATA, "Archive holds no stories")
        return SharedCollection(manifest=manifest, payload=payload, thumbnail=files.get(THUMBNAIL_NAME))

    @staticmethod
    def is_compatible(format_version: str) -> bool:
        """Same major format version as this build writes."""
        return format_version.split(".")[0] == SHARE_FORMAT_VERSION.split(".")[0]

    # ------------------------------------------------------------------
    # Manifest serialization

    @staticmethod
    def manifest_to_json(manifest: ShareManifest) -> Dict[str, Any]:
        collection = manifest.collection
        pack = collection.image_pack
        language = manifest.language
        return {
            "manifestFormatVersion": manifest.format_version,
            "appName": manifest.app_name,
            "appVersion": manifest.app_version,
            "exportedDate": manifest.exported_at.isoformat(),
            "collection": {
                "id": collection.collection_id,
                "owner_username": collection.owner,
                "language_code": collection.language,
                "display_name": collection.display_name,
                "version": collection.version,
                "last_updated_timestamp": collection.last_updated.isoformat(),
                "description": collection.description,
                "target_audience": collection.target_audience,
                "subject": collection.subject,
                "owner_full_name": collection.owner_full_name,
                "thumbnail_url": collection.thumbnail.remote_url,
                "image_pack": {"id": pack.id, "version": pack.version, "url": pack.url} if pack else None,
            },
            "language": {
                "lc": language.code,
                "ln": language.native_name,
                "ang": language.english_name,
                "ld": language.direction,
                "gw": language.is_gateway,
                "lr": language.region,
                "hc": language.home_country,
                "cc": list(language.country_codes),
                "alt": list(language.alternate_names),
            }
            if language
            else None,
            "storyCount": manifest.story_count,
            "frameCount": manifest.frame_count,
            "checksum": manifest.checksum,
            "userData": user_data_to_json(manifest.user_data) if manifest.user_data else None,
        }

    @staticmethod
    def manifest_from_json(data: Any) -> ShareManifest:
        """Raises ``ShareArchiveError`` (INVALID_MANIFEST) on a malformed manifest."""
        try:
            info = data["collection"]
            key = CollectionKey(info["owner_username"], info["language_code"], info["id"])
            pack = info.get("image_pack")
            collection = Collection(
                key=key,
                display_name=info.get("display_name") or key.collection_id,
                version=info.get("version") or INITIAL_VERSION,
                description=info.get("description"),
                last_updated=_parse_time(info.get("last_updated_timestamp")),
                target_audience=info.get("target_audience"),
                image_pack=ImagePack(pack["id"], pack["version"], pack["url"]) if pack else None,
                is_downloaded=True,
                thumbnail=ThumbnailRef(remote_url=info.get("thumbnail_url")),
                owner_full_name=info.get("owner_full_name"),
                subject=info.get("subject"),
            )
            lang = data.get("language")
            language = None
            if lang:
                language = Language(
                    code=lang["lc"],
                    native_name=lang.get("ln") or lang["lc"],
                    english_name=lang.get("ang") or "",
                    direction="rtl" if lang.get("ld") == "rtl" else "ltr",
                    is_gateway=bool(lang.get("gw")),
                    region=lang.get("lr") or "",
                    home_country=lang.get("hc") or "",
                    country_codes=list(lang.get("cc") or []),
                    alternate_names=list(lang.get("alt") or []),
                )
            user_data = data.get("userData")
            return ShareManifest(
                collection=collection,
                story_count=int(data.get("storyCount") or 0),
                frame_count=int(data.get("frameCount") or 0),
                checksum=str(data["checksum"]),
                format_version=str(data["manifestFormatVersion"]),
                app_name=data.get("appName") or APP_NAME,
                app_version=data.get("appVersion") or "",
                exported_at=_parse_time(data.get("exportedDate")),
                language=language,
                user_data=user_data_from_json(user_data, str(key)) if user_data else None,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ShareArchiveError(
                ImportIssueKind.INVALID_MANIFEST, f"Malformed manifest.json: {e!r}"
            ) from e


def user_data_to_json(bundle: UserDataBundle) -> Dict[str, Any]:
    return {
        "favorites": {
            "stories": list(bundle.favorite_stories),
            "frames": [list(pair) for pair in bundle.favorite_frames],
        },
        "progress": [
            {
                "story_number": p.story_number,
                "last_frame": p.last_frame,
                "total_frames": p.total_frames,
                "last_read": p.last_read.isoformat(),
            }
            for p in bundle.progress
        ],
        "markers": [
            {
                "story_number": m.story_number,
                "frame_number": m.frame_number,
                "note": m.note,
                "color": m.color,
                "created_at": m.created_at.isoformat(),
            }
            for m in bundle.markers
        ],
        "comments": [
            {
                "story_number": c.story_number,
                "frame_number": c.frame_number,
                "text": c.text,
                "created_at": c.created_at.isoformat(),
                "updated_at": c.updated_at.isoformat(),
            }
            for c in bundle.comments
        ],
    }


def user_data_from_json(data: Dict[str, Any], collection_id: str) -> UserDataBundle:
    """Rebind serialized reading state to ``collection_id``. Ids are not kept."""
    favorites = data.get("favorites") or {}
    return UserDataBundle(
        favorite_stories=[int(n) for n in favorites.get("stories") or []],
        favorite_frames=[(int(s), int(f)) for s, f in favorites.get("frames") or []],
        progress=[
            UserProgress(
                collection_id=collection_id,
                story_number=int(p["story_number"]),
                last_frame=int(p["last_frame"]),
                total_frames=int(p["total_frames"]),
                last_read=_parse_time(p.get("last_read")),
            )
            for p in data.get("progress") or []
        ],
        markers=[
            UserMarker(
                id="",
                collection_id=collection_id,
                story_number=int(m["story_number"]),
                frame_number=int(m["frame_number"]),
                created_at=_parse_time(m.get("created_at")),
                note=m.get("note"),
                color=m.get("color") or DEFAULT_MARKER_COLOR,
            )
            for m in data.get("markers") or []
        ],
        comments=[
            FrameComment(
                id="",
                collection_id=collection_id,
                story_number=int(c["story_number"]),
                frame_number=int(c["frame_number"]),
                text=c["text"],
                created_at=_parse_time(c.get("created_at")),
                updated_at=_parse_time(c.get("updated_at")),
            )
            for c in data.get("comments") or []
        ],
    )


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
