"""Persisted set of collection identities known to be fully downloaded."""

import json
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Set

from story_sync.core import CollectionKey

from .file_system import FileSystem

logger = logging.getLogger(__name__)


class DownloadIndex:
    """Small key-value store holding ``owner/language/collection_id`` strings.

    Kept separate from the content store. Only ``RepositoryManager`` mutates
    it, and only after a download has been fully committed to disk.
    """

    FILENAME = "downloaded_collections.json"

    def __init__(self, path: Path, file_system: Optional[FileSystem] = None) -> None:
        self.path = Path(path)
        self._fs = file_system or FileSystem()
        self._keys: Set[CollectionKey] = set()
        self.load()

    def load(self) -> None:
        """Reload from disk; unreadable files yield an empty index."""
        self._keys = set()
        if not self._fs.exists(self.path):
            return
        try:
            raw = json.loads(self._fs.read_text(self.path))
        except (OSError, ValueError) as e:
            logger.warning("Could not read download index %s: %s", self.path, e)
            return
        if not isinstance(raw, list):
            logger.warning("Download index %s is not a list; ignoring", self.path)
            return
        for item in raw:
            try:
                self._keys.add(CollectionKey.parse(item))
            except (TypeError, ValueError):
                logger.warning("Skipping invalid download index entry %r", item)

    def contains(self, key: CollectionKey) -> bool:
        return key in self._keys

    def add(self, key: CollectionKey) -> None:
        if key in self._keys:
            return
        self._keys.add(key)
        try:
            self._save()
        except OSError:
            self._keys.discard(key)
            raise

    def remove(self, key: CollectionKey) -> None:
        if key not in self._keys:
            return
        self._keys.discard(key)
        try:
            self._save()
        except OSError:
            self._keys.add(key)
            raise

    def keys(self) -> List[CollectionKey]:
        return sorted(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[CollectionKey]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._keys)

    def _save(self) -> None:
        payload = json.dumps([str(key) for key in sorted(self._keys)], indent=2)
        self._fs.write_text(self.path, payload)
