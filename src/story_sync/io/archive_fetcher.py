"""Archive Fetcher - downloads a collection zipball and extracts it locally.

The metadata descriptor is written only after every archive entry has been
extracted. The fetcher never touches the downloaded-set index; marking a
collection downloaded is the caller's job once ``fetch`` returns.
"""

import asyncio
import io
import logging
import posixpath
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from story_sync.core import Collection, CollectionKey, DownloadError, ErrorKind, SyncError

from .file_system import FileSystem
from .metadata_store import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    content_dir: Path
    files: List[Tuple[str, bytes]] = field(default_factory=list)
    descriptor_path: Optional[Path] = None

    @property
    def file_count(self) -> int:
        return len(self.files)


class ArchiveFetcher:
    """Fetch, unzip and describe one collection.

    ``network`` is anything with an async ``fetch(url)`` returning an object
    with ``status``, ``ok`` and ``content`` (see ``NetworkService``).
    """

    def __init__(
        self,
        network,
        metadata_store: MetadataStore,
        file_system: Optional[FileSystem] = None,
    ) -> None:
        if network is None:
            raise ValueError("network must not be None")
        if metadata_store is None:
            raise ValueError("MetadataStore must not be None")
        self.network = network
        self.metadata_store = metadata_store
        self._fs = file_system or FileSystem()

    async def fetch(
        self,
        url: str,
        key: CollectionKey,
        metadata: Collection,
        before_write: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> ExtractionResult:
        """Download ``url`` and extract it under the content dir of ``key``.

        ``before_write`` is awaited once the archive is downloaded and every
        entry has been checked, right before the first file is written.

        Raises:
            DownloadError: kind NETWORK_UNAVAILABLE, HTTP_STATUS,
                ARCHIVE_CORRUPT or FILESYSTEM_FAILURE.
        """
        if metadata.key != key:
            raise ValueError(f"metadata identity {metadata.key} does not match {key}")

        try:
            response = await self.network.fetch(url)
        except SyncError as e:
            raise DownloadError(e.kind, f"Could not download {url}: {e}", status=e.status) from e
        if not response.ok:
            raise DownloadError(
                ErrorKind.HTTP_STATUS, f"Archive request for {key} failed", status=response.status
            )
        return await self.install(response.content, key, metadata, before_write=before_write)

    async def install(
        self,
        payload: bytes,
        key: CollectionKey,
        metadata: Collection,
        before_write: Optional[Callable[[], Awaitable[None]]] = None,
        include: Optional[Callable[[str], bool]] = None,
    ) -> ExtractionResult:
        """Extract an archive already in memory, then write the descriptor.

        ``include`` filters entries by their destination-relative path.

        Raises:
            DownloadError: kind ARCHIVE_CORRUPT or FILESYSTEM_FAILURE.
        """
        if metadata.key != key:
            raise ValueError(f"metadata identity {metadata.key} does not match {key}")

        destination = self.metadata_store.content_dir(key)
        with self._open(payload) as archive:
            plan = self._plan(archive)
            if include is not None:
                plan = [(info, relative) for info, relative in plan if include(relative)]
            if before_write is not None:
                await before_write()
            result = await asyncio.to_thread(self._extract, archive, plan, destination)
        logger.info("Extracted %d files for %s into %s", result.file_count, key, destination)

        try:
            result.descriptor_path = await asyncio.to_thread(self.metadata_store.write, metadata)
        except OSError as e:
            logger.error("Descriptor write failed for %s: %s", key, e)
            raise DownloadError(
                ErrorKind.FILESYSTEM_FAILURE, f"Could not write descriptor for {key}: {e}"
            ) from e
        return result

    @staticmethod
    def _open(payload: bytes) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(io.BytesIO(payload))
        except (zipfile.BadZipFile, ValueError) as e:
            raise DownloadError(ErrorKind.ARCHIVE_CORRUPT, f"Payload is not a zip archive: {e}") from e

    def _plan(self, archive: zipfile.ZipFile) -> List[Tuple[zipfile.ZipInfo, str]]:
        """File entries paired with their destination-relative paths."""
        entries = [info for info in archive.infolist() if not info.is_dir()]
        prefix = self._common_root(info.filename for info in entries)
        return [(info, self._safe_relative(info.filename, prefix)) for info in entries]

    def _extract(
        self,
        archive: zipfile.ZipFile,
        plan: List[Tuple[zipfile.ZipInfo, str]],
        destination: Path,
    ) -> ExtractionResult:
        result = ExtractionResult(content_dir=destination)
        try:
            self._fs.mkdir(destination)
        except OSError as e:
            raise DownloadError(ErrorKind.FILESYSTEM_FAILURE, f"Cannot create {destination}: {e}") from e

        for info, relative in plan:
            try:
                data = archive.read(info)
            except (zipfile.BadZipFile, OSError, RuntimeError) as e:
                raise DownloadError(
                    ErrorKind.ARCHIVE_CORRUPT, f"Cannot read entry {info.filename}: {e}"
                ) from e
            try:
                self._fs.write_file(destination / relative, data)
            except OSError as e:
                logger.error("Write failed for %s: %s", destination / relative, e)
                raise DownloadError(
                    ErrorKind.FILESYSTEM_FAILURE, f"Cannot write {relative}: {e}"
                ) from e
            result.files.append((relative, data))
        return result

    @staticmethod
    def _common_root(names) -> str:
        """Single top-level folder shared by every entry, or ''."""
        roots = set()
        for name in names:
            parts = name.replace("\\", "/").lstrip("/").split("/")
            if len(parts) < 2:
                return ""
            roots.add(parts[0])
            if len(roots) > 1:
                return ""
        return f"{roots.pop()}/" if roots else ""

    @staticmethod
    def _safe_relative(name: str, prefix: str) -> str:
        name = name.replace("\\", "/").lstrip("/")
        if prefix and name.startswith(prefix):
            name = name[len(prefix):]
        normalized = posixpath.normpath(name)
        if normalized in ("", ".") or normalized.startswith("../") or normalized == "..":
            raise DownloadError(ErrorKind.ARCHIVE_CORRUPT, f"Unsafe archive entry: {name}")
        return normalized
