"""Thumbnail cache for collection preview images.

Previews live under ``{app_root}/thumbnails/`` as
``{owner}_{language}_{collection_id}.jpg``, independent of whether the
collection's archive is present.

Best-effort philosophy: ``download`` logs and returns None on any failure.
"""

import logging
from pathlib import Path
from typing import Optional

from story_sync.core import CollectionKey, SyncError
from story_sync.io import FileSystem

logger = logging.getLogger(__name__)


class ThumbnailCache:
    """Stores and serves cached previews per collection identity.

    Minimum payload: 100 bytes (smaller responses are error pages or
    placeholders and are discarded).
    """

    MIN_BYTES = 100

    def __init__(
        self,
        cache_dir: Path,
        network=None,
        file_system: Optional[FileSystem] = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.network = network
        self._fs = file_system or FileSystem()
        self._fs.mkdir(self.cache_dir)

    def path_for(self, key: CollectionKey) -> Path:
        return self.cache_dir / key.thumbnail_name

    def get(self, key: CollectionKey) -> Optional[Path]:
        """Cached preview path, or None if never cached."""
        path = self.path_for(key)
        return path if self._fs.exists(path) else None

    def save(self, key: CollectionKey, data: bytes) -> Path:
        """Store ``data`` as the preview of ``key``.

        Raises:
            OSError: If the file cannot be written.
        """
        path = self.path_for(key)
        self._fs.write_file(path, data)
        return path

    def delete(self, key: CollectionKey) -> bool:
        try:
            return self._fs.delete(self.path_for(key))
        except OSError as e:
            logger.warning("Could not delete thumbnail for %s: %s", key, e)
            return False

    async def download(self, key: CollectionKey, url: Optional[str]) -> Optional[Path]:
        """Fetch and cache the preview at ``url``; never raises."""
        if not url or self.network is None:
            return None
        try:
            response = await self.network.fetch(url)
        except SyncError as e:
            logger.warning("Thumbnail download failed for %s: %s", key, e)
            return None
        if not response.ok:
            logger.warning("Thumbnail for %s returned HTTP %s", key, response.status)
            return None
        if len(response.content) < self.MIN_BYTES:
            logger.warning(
                "Thumbnail for %s too small (%d bytes), skipping", key, len(response.content)
            )
            return None
        try:
            return self.save(key, response.content)
        except OSError as e:
            logger.warning("Could not cache thumbnail for %s: %s", key, e)
            return None
