"""Metadata descriptor persistence with validation and self-repair.

Every downloaded collection has a descriptor in the ``metadata.json`` next to
its extracted content. Collections from one owner in one language share that
content directory, so the file holds one descriptor per collection id::

    {"collections": {"obs": {...}, "obs-kids": {...}}}

A single flat descriptor (the layout written by older installs) is read as a
one-entry file. A descriptor is trusted only when its ``id``/``owner``/
``language`` match the identity being queried. Anything else is repaired with
a minimal descriptor, since the extracted content is still usable; repairing
one collection never touches its siblings' entries.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from story_sync.core import (
    INITIAL_VERSION,
    Collection,
    CollectionKey,
    ErrorKind,
    ImagePack,
    ThumbnailRef,
)

from .file_system import FileSystem

logger = logging.getLogger(__name__)


class MetadataStore:
    DESCRIPTOR_NAME = "metadata.json"
    ENTRIES_FIELD = "collections"

    def __init__(self, app_root: Path, file_system: Optional[FileSystem] = None) -> None:
        self.app_root = Path(app_root)
        self._fs = file_system or FileSystem()
        # Descriptor files are read-modify-written from worker threads.
        self._lock = threading.RLock()

    def content_dir(self, key: CollectionKey) -> Path:
        """``{app_root}/{language}/{owner}/``"""
        return self.app_root / key.language / key.owner

    def descriptor_path(self, key: CollectionKey) -> Path:
        return self.content_dir(key) / self.DESCRIPTOR_NAME

    def exists(self, key: CollectionKey) -> bool:
        return self.read_descriptor(key) is not None

    def read_descriptor(self, key: CollectionKey) -> Optional[Dict[str, Any]]:
        """Raw descriptor entry stored for ``key``'s collection id, if any."""
        try:
            entry = self._read_entries(self.descriptor_path(key)).get(key.collection_id)
        except (OSError, ValueError):
            return None
        return entry if isinstance(entry, dict) else None

    def write(self, collection: Collection) -> Path:
        """Store the descriptor of ``collection``, keeping sibling entries.

        Raises ``OSError``.
        """
        path = self.descriptor_path(collection.key)
        with self._lock:
            entries = self._entries_for_update(path)
            entries[collection.collection_id] = self.to_descriptor(collection)
            self._write_entries(path, entries)
        return path

    def remove(self, key: CollectionKey) -> bool:
        """Drop the descriptor entry of ``key``; the file goes with its last entry.

        Returns False if there was no entry. Raises ``OSError``.
        """
        path = self.descriptor_path(key)
        with self._lock:
            entries = self._entries_for_update(path)
            if entries.pop(key.collection_id, None) is None:
                return False
            if entries:
                self._write_entries(path, entries)
            else:
                self._fs.delete(path)
        return True

    def load_validated(self, key: CollectionKey) -> Collection:
        """Return the descriptor for ``key``, repairing it if it is unusable.

        Never raises for a missing or corrupt descriptor. Repeated calls
        converge to the same repaired state.
        """
        path = self.descriptor_path(key)
        with self._lock:
            problem = None
            entry: Any = None
            try:
                entry = self._read_entries(path).get(key.collection_id)
                if entry is None:
                    problem = "no descriptor entry"
                else:
                    problem = self._identity_problem(entry, key)
            except FileNotFoundError:
                problem = "descriptor missing"
            except (OSError, ValueError) as e:
                problem = f"unreadable descriptor ({e})"

            if problem is None:
                return self.from_descriptor(entry, key)

            logger.warning(
                "%s for %s at %s: %s; rewriting minimal descriptor",
                ErrorKind.METADATA_CORRUPT.value,
                key,
                path,
                problem,
            )
            repaired = Collection.minimal(key, is_downloaded=True)
            try:
                self.write(repaired)
            except OSError as e:
                logger.warning("Could not rewrite descriptor for %s: %s", key, e)
            return repaired

    def read_version(self, key: CollectionKey) -> str:
        """Stored version for ``key``, or the initial version if unavailable."""
        entry = self.read_descriptor(key)
        if entry is None or self._identity_problem(entry, key) is not None:
            return INITIAL_VERSION
        version = entry.get("version")
        return version if isinstance(version, str) and version.strip() else INITIAL_VERSION

    def _read_entries(self, path: Path) -> Dict[str, Any]:
        """Descriptor entries by collection id. Raises ``OSError``/``ValueError``."""
        data = json.loads(self._fs.read_text(path))
        if not isinstance(data, dict):
            raise ValueError("descriptor is not an object")
        entries = data.get(self.ENTRIES_FIELD)
        if isinstance(entries, dict):
            return dict(entries)
        if isinstance(data.get("id"), str) and data["id"]:
            return {data["id"]: data}
        raise ValueError("descriptor has no collection entries")

    def _entries_for_update(self, path: Path) -> Dict[str, Any]:
        try:
            return self._read_entries(path)
        except FileNotFoundError:
            return {}
        except ValueError as e:
            logger.warning("Replacing unreadable descriptor file %s: %s", path, e)
            return {}

    def _write_entries(self, path: Path, entries: Dict[str, Any]) -> None:
        payload = {self.ENTRIES_FIELD: dict(sorted(entries.items()))}
        self._fs.write_text(path, json.dumps(payload, indent=2))

    @staticmethod
    def _identity_problem(data: Any, key: CollectionKey) -> Optional[str]:
        if not isinstance(data, dict):
            return "descriptor is not an object"
        for field_name in ("id", "owner", "language"):
            if not data.get(field_name):
                return f"missing {field_name}"
        if (data["id"], data["owner"], data["language"]) != (
            key.collection_id,
            key.owner,
            key.language,
        ):
            return "identity mismatch"
        return None

    @staticmethod
    def to_descriptor(collection: Collection) -> Dict[str, Any]:
        pack = collection.image_pack
        local_thumb = collection.thumbnail.local_path
        return {
            "id": collection.collection_id,
            "owner": collection.owner,
            "language": collection.language,
            "displayName": collection.display_name,
            "description": collection.description,
            "version": collection.version,
            "lastUpdated": collection.last_updated.isoformat(),
            "targetAudience": collection.target_audience,
            "imagePack": {"id": pack.id, "version": pack.version, "url": pack.url} if pack else None,
            "isDownloaded": collection.is_downloaded,
            "thumbnail": collection.thumbnail.remote_url,
            "localThumbnail": str(local_thumb) if local_thumb else None,
            "ownerFullName": collection.owner_full_name,
            "subject": collection.subject,
            "contentsUrl": collection.contents_url,
        }

    @staticmethod
    def from_descriptor(data: Dict[str, Any], key: CollectionKey) -> Collection:
        """Build a collection from a validated descriptor, tolerating bad optional fields."""
        try:
            last_updated = datetime.fromisoformat(data.get("lastUpdated") or "")
            if last_updated.tzinfo is None:
                last_updated = last_updated.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            last_updated = datetime.now(timezone.utc)

        version = data.get("version")
        if not isinstance(version, str) or not version.strip():
            version = INITIAL_VERSION

        image_pack = None
        pack = data.get("imagePack")
        if isinstance(pack, dict) and all(k in pack for k in ("id", "version", "url")):
            image_pack = ImagePack(id=pack["id"], version=pack["version"], url=pack["url"])

        local_thumb = data.get("localThumbnail")
        return Collection(
            key=key,
            display_name=data.get("displayName") or key.collection_id,
            version=version,
            description=data.get("description"),
            last_updated=last_updated,
            target_audience=data.get("targetAudience"),
            image_pack=image_pack,
            is_downloaded=True,
            thumbnail=ThumbnailRef(
                remote_url=data.get("thumbnail"),
                local_path=Path(local_thumb) if local_thumb else None,
            ),
            owner_full_name=data.get("ownerFullName"),
            subject=data.get("subject"),
            contents_url=data.get("contentsUrl"),
        )
