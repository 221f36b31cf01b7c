"""Domain entity for a versioned story collection."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from .collection_key import CollectionKey

INITIAL_VERSION = "0.0.0"


class CollectionState(Enum):
    """Client-observed lifecycle of a collection."""

    UNKNOWN = "unknown"
    DISCOVERED = "discovered"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    DELETED = "deleted"


@dataclass(frozen=True)
class ImagePack:
    id: str
    version: str
    url: str


@dataclass(frozen=True)
class ThumbnailRef:
    """Remote preview URL plus the cached local copy, if any."""

    remote_url: Optional[str] = None
    local_path: Optional[Path] = None


@dataclass(frozen=True)
class Collection:
    """A versioned, owner-published bundle of stories in one language.

    Attributes:
        key: Composite identity (owner, language, collection_id).
        display_name: Human-readable title.
        version: Semantic version string of the content.
        last_updated: When the content was published or last refreshed.
        is_downloaded: True only once the archive is fully extracted and its
            metadata descriptor has been written.
    """

    key: CollectionKey
    display_name: str
    version: str = INITIAL_VERSION
    description: Optional[str] = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    target_audience: Optional[str] = None
    image_pack: Optional[ImagePack] = None
    is_downloaded: bool = False
    thumbnail: ThumbnailRef = field(default_factory=ThumbnailRef)
    owner_full_name: Optional[str] = None
    subject: Optional[str] = None
    contents_url: Optional[str] = None

    @property
    def owner(self) -> str:
        return self.key.owner

    @property
    def language(self) -> str:
        return self.key.language

    @property
    def collection_id(self) -> str:
        return self.key.collection_id

    @property
    def store_id(self) -> str:
        """Identifier used for rows in the content store."""
        return str(self.key)

    @classmethod
    def minimal(cls, key: CollectionKey, is_downloaded: bool = True) -> "Collection":
        """Smallest valid record, used when richer metadata is unavailable."""
        return cls(
            key=key,
            display_name=key.collection_id,
            version=INITIAL_VERSION,
            is_downloaded=is_downloaded,
        )

    def with_changes(self, **changes) -> "Collection":
        return replace(self, **changes)
