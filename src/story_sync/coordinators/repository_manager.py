"""Repository Manager - Orchestrates discovery, download and removal of collections."""

import asyncio
import functools
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from story_sync.core import (
    Collection,
    CollectionKey,
    CollectionState,
    DeleteError,
    DownloadError,
    ErrorKind,
    ImportIssue,
    ImportIssueKind,
    ImportResult,
    Language,
    NotFoundError,
    Recommendation,
    ShareArchiveError,
    StorageError,
    SyncError,
    ThumbnailRef,
)
from story_sync.io import (
    ArchiveFetcher,
    DatabaseManager,
    DecodedContent,
    DownloadIndex,
    ExtractionResult,
    FileSystem,
    MetadataStore,
    ShareArchive,
    SharedCollection,
    StoryDecoder,
)
from story_sync.io.share_archive import is_story_entry
from story_sync.services import (
    CatalogClient,
    CatalogEntry,
    NetworkService,
    ThumbnailCache,
    UserDataBackup,
    VersionReconciler,
    is_newer,
    parse_version,
)

logger = logging.getLogger(__name__)


class RepositoryManager:
    """Single entry point for collection lifecycle operations.

    Responsibilities:
    - Search the remote catalog, falling back to local state when offline
    - Resolve an identity through memory, local store and network
    - Download, extract and register collections
    - Delete collections with every dependent row
    - Check for newer remote versions
    - Export and import collections as share archives

    Only this class mutates the downloaded-set index. Operations on the same
    identity are serialized by a per-key lock; different identities run
    concurrently.
    """

    def __init__(
        self,
        db: DatabaseManager,
        index: DownloadIndex,
        metadata_store: MetadataStore,
        fetcher: ArchiveFetcher,
        reconciler: VersionReconciler,
        catalog: CatalogClient,
        network: NetworkService,
        thumbnails: ThumbnailCache,
        decoder: Optional[StoryDecoder] = None,
        file_system: Optional[FileSystem] = None,
    ):
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        if index is None:
            raise ValueError("DownloadIndex must not be None")
        if metadata_store is None:
            raise ValueError("MetadataStore must not be None")
        if fetcher is None:
            raise ValueError("ArchiveFetcher must not be None")
        if reconciler is None:
            raise ValueError("VersionReconciler must not be None")
        if catalog is None:
            raise ValueError("CatalogClient must not be None")
        if network is None:
            raise ValueError("NetworkService must not be None")
        if thumbnails is None:
            raise ValueError("ThumbnailCache must not be None")

        self.db = db
        self.index = index
        self.metadata_store = metadata_store
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.catalog = catalog
        self.network = network
        self.thumbnails = thumbnails
        self.decoder = decoder or StoryDecoder()
        self._fs = file_system or FileSystem()
        self.share = ShareArchive()
        self.user_data = UserDataBackup(db)

        self._cache: Dict[CollectionKey, Collection] = {}
        self._locks: Dict[CollectionKey, asyncio.Lock] = {}
        self._states: Dict[CollectionKey, CollectionState] = {}

    async def __aenter__(self) -> "RepositoryManager":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self.network.close()

    # ------------------------------------------------------------------
    # Discovery

    async def search(self, language: Optional[str] = None) -> List[Collection]:
        """Catalog results merged with local download state.

        Offline, or when the catalog cannot be reached, returns only the
        locally downloaded collections (filtered by ``language``). Never
        raises for network failures.
        """
        if not await self.network.is_online():
            logger.info("Offline; searching downloaded collections only")
            return await self._search_local(language)
        try:
            entries = await self.catalog.search(language=language)
        except SyncError as e:
            logger.warning("Catalog search failed, using local collections: %s", e)
            return await self._search_local(language)

        results = []
        for entry in entries:
            try:
                key = entry.key
            except ValueError as e:
                logger.warning("Skipping catalog entry with invalid identity: %s", e)
                continue
            if key in self.index:
                results.append(await self._load_local(key))
                continue
            collection = entry.to_collection(
                is_downloaded=False, local_thumbnail=self.thumbnails.get(key)
            )
            self._cache[key] = collection
            if self._states.get(key) in (None, CollectionState.UNKNOWN, CollectionState.DELETED):
                self._states[key] = CollectionState.DISCOVERED
            results.append(collection)
        return results

    async def resolve(self, owner: str, language: str, collection_id: str) -> Collection:
        """Richest available record for an identity.

        Lookup order: memory, local descriptor (repaired if corrupt), remote
        catalog when online, then any record left in the content store.

        Raises:
            NotFoundError: If no source knows the identity.
        """
        key = CollectionKey(owner, language, collection_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if key in self.index:
            collection = await self._load_local(key)
            self._cache[key] = collection
            return collection

        entry = await self._lookup_entry(key)
        if entry is not None:
            collection = entry.to_collection(
                is_downloaded=False, local_thumbnail=self.thumbnails.get(key)
            )
            self._cache[key] = collection
            self._states.setdefault(key, CollectionState.DISCOVERED)
            return collection

        stored = self.db.get_collection(key)
        if stored is not None:
            return stored.with_changes(is_downloaded=False)

        raise NotFoundError(f"Collection {key} not found locally or remotely")

    # ------------------------------------------------------------------
    # Lifecycle

    async def download(self, collection: Collection, version: Optional[str] = None) -> Collection:
        """Download, extract and register a collection.

        Already downloaded and not older than the target version is a no-op
        that refreshes the stored record from the local descriptor.

        Raises:
            DownloadError: On network, HTTP, archive, or filesystem failure.
                The identity is never left marked as downloaded.
        """
        key = collection.key
        async with self._lock_for(key):
            if key in self.index:
                local_version = await asyncio.to_thread(self.metadata_store.read_version, key)
                target = version or await self.reconciler.remote_version(key)
                if target is None or not is_newer(local_version, target):
                    logger.info("%s already at %s; refreshing local record", key, local_version)
                    return await self._refresh_local(key)

            previous = self._states.get(key)
            self._states[key] = CollectionState.DOWNLOADING
            try:
                stored = await self._download_locked(collection, version)
            except DownloadError:
                if key in self.index:
                    self._states[key] = previous or CollectionState.DOWNLOADED
                else:
                    self._states[key] = CollectionState.DISCOVERED
                raise
            self._states[key] = CollectionState.DOWNLOADED
            return stored

    async def delete(self, collection_id) -> None:
        """Remove a collection's files, thumbnail, rows and index entry.

        Missing files are not errors.

        Raises:
            DeleteError: If the index or content store cannot be updated.
        """
        key = CollectionKey.coerce(collection_id)
        async with self._lock_for(key):
            try:
                self.index.remove(key)
            except OSError as e:
                logger.error("Could not update download index for %s: %s", key, e)
                raise DeleteError(ErrorKind.FILESYSTEM_FAILURE, f"Index update failed: {e}") from e
            self._cache.pop(key, None)

            await self._remove_content(key)
            self.thumbnails.delete(key)

            try:
                removed = self.db.delete_collection(key)
            except StorageError as e:
                raise DeleteError(ErrorKind.FILESYSTEM_FAILURE, str(e)) from e
            logger.info("Deleted %s (%s)", key, removed)
            self._states[key] = CollectionState.DELETED

    async def has_update(self, collection_id) -> bool:
        """True if the catalog holds a newer version than the local copy.

        Never raises; offline or not downloaded means False.
        """
        key = CollectionKey.coerce(collection_id)
        if key not in self.index:
            return False
        local_version = await asyncio.to_thread(self.metadata_store.read_version, key)
        newer = await self.reconciler.has_update(key, local_version)
        if self._states.get(key) != CollectionState.DOWNLOADING:
            self._states[key] = (
                CollectionState.UPDATE_AVAILABLE if newer else CollectionState.UP_TO_DATE
            )
        return newer

    # ------------------------------------------------------------------
    # Sharing

    async def export_collection(
        self, collection_id, path, include_user_data: bool = True
    ) -> Path:
        """Write a downloaded collection to ``path`` as a share archive.

        Raises:
            NotFoundError: If the collection is not downloaded or has no stories.
            SyncError: kind FILESYSTEM_FAILURE if the archive cannot be written.
        """
        key = CollectionKey.coerce(collection_id)
        path = Path(path)
        async with self._lock_for(key):
            if key not in self.index:
                raise NotFoundError(f"Collection {key} is not downloaded")
            collection = await self._load_local(key)
            stories = self.db.list_stories(collection.store_id)
            if not stories:
                raise NotFoundError(f"Collection {key} has no stories to export")
            frames = [
                frame
                for story in stories
                for frame in self.db.list_frames(collection.store_id, story.story_number)
            ]

            thumbnail = None
            thumb_path = self.thumbnails.get(key)
            if thumb_path is not None:
                try:
                    thumbnail = await asyncio.to_thread(self._fs.read_file, thumb_path)
                except OSError as e:
                    logger.warning("Exporting %s without its thumbnail: %s", key, e)

            user_data = None
            if include_user_data:
                user_data = self.user_data.backup(collection.store_id)
                if user_data.is_empty:
                    user_data = None

            payload = await asyncio.to_thread(
                self.share.build,
                collection,
                stories,
                frames,
                self.db.get_language(key.language),
                thumbnail,
                user_data,
            )
            try:
                await asyncio.to_thread(self._fs.write_file, path, payload)
            except OSError as e:
                logger.error("Could not write share archive %s: %s", path, e)
                raise SyncError(ErrorKind.FILESYSTEM_FAILURE, f"Cannot write {path}: {e}") from e

        logger.info("Exported %s (%d stories) to %s", key, len(stories), path)
        return path

    async def import_collection(
        self, path, overwrite: bool = False, skip_version_check: bool = False
    ) -> ImportResult:
        """Install a share archive written by ``export_collection``.

        An identity that is already downloaded is skipped unless ``overwrite``
        is set; the returned issue says whether the archive is newer, older or
        the same version. Failures are reported in the result, not raised.
        """
        path = Path(path)
        result = ImportResult()
        try:
            payload = await asyncio.to_thread(self._fs.read_file, path)
        except OSError as e:
            result.issues.append(
                ImportIssue(ImportIssueKind.FILE_READ_ERROR, f"Cannot read {path}: {e}")
            )
            return result
        try:
            shared = await asyncio.to_thread(self.share.read, payload, skip_version_check)
        except ShareArchiveError as e:
            logger.warning("Refusing share archive %s: %s", path, e)
            result.issues.append(ImportIssue(e.issue, str(e)))
            return result

        manifest = shared.manifest
        key = manifest.collection.key
        result.key = key
        async with self._lock_for(key):
            if key in self.index:
                existing = await asyncio.to_thread(self.metadata_store.read_version, key)
                issue = self._version_issue(existing, manifest.collection.version)
                if not overwrite:
                    logger.info("Skipping import of %s: %s", key, issue.message)
                    result.issues.append(issue)
                    result.skipped = True
                    return result
                if issue.kind is ImportIssueKind.VERSION_CONFLICT_OLDER:
                    result.issues.append(issue)

            previous = self._states.get(key)
            self._states[key] = CollectionState.DOWNLOADING
            try:
                await self._install_shared(shared)
            except DownloadError as e:
                if key in self.index:
                    self._states[key] = previous or CollectionState.DOWNLOADED
                else:
                    self._states[key] = CollectionState.DISCOVERED
                kind = (
                    ImportIssueKind.CORRUPTED_DATA
                    if e.kind is ErrorKind.ARCHIVE_CORRUPT
                    else ImportIssueKind.FILE_WRITE_ERROR
                )
                result.issues.append(ImportIssue(kind, str(e)))
                return result
            self._states[key] = CollectionState.DOWNLOADED
            result.success = True

            bundle = manifest.user_data
            if bundle is not None and not bundle.is_empty:
                try:
                    result.restored_user_items = self.user_data.restore(
                        manifest.collection.store_id, bundle
                    )
                except StorageError as e:
                    logger.warning("Imported %s without its reading state: %s", key, e)
                    result.issues.append(
                        ImportIssue(
                            ImportIssueKind.FILE_WRITE_ERROR, f"Reading state not restored: {e}"
                        )
                    )

        logger.info("Imported %s version %s from %s", key, manifest.collection.version, path)
        return result

    async def _install_shared(self, shared: SharedCollection) -> Collection:
        manifest = shared.manifest
        key = manifest.collection.key
        remote_thumb = manifest.collection.thumbnail.remote_url
        metadata = manifest.collection.with_changes(
            is_downloaded=True,
            thumbnail=ThumbnailRef(remote_thumb, self.thumbnails.get(key)),
        )

        before_write = None
        if key in self.index:
            before_write = functools.partial(self._withdraw, key)
        result = await self.fetcher.install(
            shared.payload, key, metadata, before_write=before_write, include=is_story_entry
        )

        if shared.thumbnail:
            try:
                local_thumb = await asyncio.to_thread(self.thumbnails.save, key, shared.thumbnail)
            except OSError as e:
                logger.warning("Could not store imported thumbnail of %s: %s", key, e)
            else:
                metadata = await self._record_thumbnail(metadata, local_thumb)

        if manifest.language is not None:
            try:
                self.db.save_language(manifest.language)
            except StorageError as e:
                logger.warning("Could not store language %s: %s", manifest.language.code, e)

        await self._register(metadata, result)
        return metadata

    @staticmethod
    def _version_issue(existing: Optional[str], incoming: str) -> ImportIssue:
        """Conflict between a local copy at ``existing`` and an archive at ``incoming``."""
        local, imported = parse_version(existing), parse_version(incoming)
        if imported > local:
            return ImportIssue(
                ImportIssueKind.VERSION_CONFLICT_NEWER,
                f"Archive holds a newer version ({incoming}) than the local copy ({existing})",
                existing_version=existing,
                import_version=incoming,
                recommendation=Recommendation.OVERWRITE,
            )
        if imported < local:
            return ImportIssue(
                ImportIssueKind.VERSION_CONFLICT_OLDER,
                f"Archive holds an older version ({incoming}) than the local copy ({existing})",
                existing_version=existing,
                import_version=incoming,
                recommendation=Recommendation.SKIP,
            )
        return ImportIssue(
            ImportIssueKind.DUPLICATE_COLLECTION,
            f"Version {incoming} is already downloaded",
            existing_version=existing,
            import_version=incoming,
            recommendation=Recommendation.SKIP,
        )

    # ------------------------------------------------------------------
    # Local state

    async def get_downloaded(self) -> List[Collection]:
        return [await self._load_local(key) for key in self.index.keys()]

    def is_downloaded(self, collection_id) -> bool:
        return CollectionKey.coerce(collection_id) in self.index

    def state(self, collection_id) -> CollectionState:
        key = CollectionKey.coerce(collection_id)
        known = self._states.get(key)
        if known is not None:
            return known
        if key in self.index:
            return CollectionState.DOWNLOADED
        if key in self._cache or self.db.get_collection(key) is not None:
            return CollectionState.DISCOVERED
        return CollectionState.UNKNOWN

    def clear_cache(self) -> None:
        self._cache.clear()

    async def get_remote_languages(self) -> List[Language]:
        """Catalog languages, saved into the content store. Empty when offline."""
        if not await self.network.is_online():
            return []
        try:
            languages = await self.catalog.list_languages()
        except SyncError as e:
            logger.warning("Could not list remote languages: %s", e)
            return []
        for language in languages:
            try:
                self.db.save_language(language)
            except StorageError as e:
                logger.warning("Could not store language %s: %s", language.code, e)
        return languages

    # ------------------------------------------------------------------
    # Internals

    def _lock_for(self, key: CollectionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _search_local(self, language: Optional[str]) -> List[Collection]:
        keys = [k for k in self.index.keys() if language is None or k.language == language]
        return [await self._load_local(key) for key in keys]

    async def _load_local(self, key: CollectionKey) -> Collection:
        collection = await asyncio.to_thread(self.metadata_store.load_validated, key)
        local_thumb = self.thumbnails.get(key)
        if local_thumb is not None and collection.thumbnail.local_path is None:
            collection = collection.with_changes(
                thumbnail=ThumbnailRef(collection.thumbnail.remote_url, local_thumb)
            )
        return collection.with_changes(is_downloaded=True)

    async def _refresh_local(self, key: CollectionKey) -> Collection:
        self._cache.pop(key, None)
        collection = await self._load_local(key)
        try:
            self.db.save_collection(collection)
        except StorageError as e:
            logger.warning("Could not refresh stored record for %s: %s", key, e)
        return collection

    async def _lookup_entry(self, key: CollectionKey) -> Optional[CatalogEntry]:
        if not await self.network.is_online():
            return None
        try:
            entry = await self.catalog.get_entry(key.owner, key.collection_id)
        except SyncError as e:
            logger.info("Catalog lookup for %s failed: %s", key, e)
            return None
        if entry.language != key.language:
            logger.info("Catalog entry for %s is in %s", key, entry.language)
            return None
        return entry

    async def _download_locked(self, collection: Collection, version: Optional[str]) -> Collection:
        key = collection.key
        if not await self.network.is_online():
            raise DownloadError(ErrorKind.NETWORK_UNAVAILABLE, f"Offline; cannot download {key}")

        entry = await self._lookup_entry(key)
        base = entry.to_collection() if entry is not None else collection
        target_version = version or (entry.version if entry else None) or collection.version
        url = entry.zipball_url if entry is not None and not version else None
        if not url:
            url = self.catalog.zipball_url(key.owner, key.collection_id, version or "master")

        remote_thumb = base.thumbnail.remote_url
        metadata = base.with_changes(
            version=target_version,
            is_downloaded=True,
            last_updated=datetime.now(timezone.utc),
            thumbnail=ThumbnailRef(remote_thumb, self.thumbnails.get(key)),
        )

        # An update overwrites the old files in place, so the old copy stops
        # counting as downloaded before the first write.
        before_write = None
        if key in self.index:
            before_write = functools.partial(self._withdraw, key)
        result = await self.fetcher.fetch(url, key, metadata, before_write=before_write)

        local_thumb = await self.thumbnails.download(key, remote_thumb)
        if local_thumb is not None:
            metadata = await self._record_thumbnail(metadata, local_thumb)

        decoded = await self._register(metadata, result)
        logger.info(
            "Downloaded %s version %s (%d files, %d stories)",
            key,
            target_version,
            result.file_count,
            len(decoded.stories),
        )
        return metadata

    async def _register(self, metadata: Collection, result: ExtractionResult) -> DecodedContent:
        """Store decoded content for extracted files and mark the collection downloaded."""
        key = metadata.key
        decoded = self.decoder.decode(metadata.store_id, result.files)

        try:
            self.db.save_collection(metadata.with_changes(is_downloaded=False))
            self.db.replace_collection_content(key, decoded.stories, decoded.frames)
        except StorageError as e:
            raise DownloadError(ErrorKind.FILESYSTEM_FAILURE, str(e)) from e

        try:
            self.index.add(key)
        except OSError as e:
            logger.error("Could not mark %s downloaded: %s", key, e)
            raise DownloadError(
                ErrorKind.FILESYSTEM_FAILURE, f"Download index update failed: {e}"
            ) from e

        try:
            self.db.mark_collection_downloaded(key, True)
        except StorageError as e:
            logger.warning("Stored record for %s not flagged downloaded: %s", key, e)

        self._cache.pop(key, None)
        return decoded

    async def _record_thumbnail(self, metadata: Collection, local_thumb: Path) -> Collection:
        if local_thumb == metadata.thumbnail.local_path:
            return metadata
        metadata = metadata.with_changes(
            thumbnail=ThumbnailRef(metadata.thumbnail.remote_url, local_thumb)
        )
        try:
            await asyncio.to_thread(self.metadata_store.write, metadata)
        except OSError as e:
            logger.warning("Could not record thumbnail of %s in descriptor: %s", metadata.key, e)
        return metadata

    async def _withdraw(self, key: CollectionKey) -> None:
        """Stop treating ``key`` as downloaded while its files are replaced."""
        try:
            self.index.remove(key)
        except OSError as e:
            logger.error("Could not unmark %s before update: %s", key, e)
            raise DownloadError(
                ErrorKind.FILESYSTEM_FAILURE, f"Download index update failed: {e}"
            ) from e
        self._cache.pop(key, None)
        try:
            self.db.mark_collection_downloaded(key, False)
        except StorageError as e:
            logger.warning("Stored record for %s still flagged downloaded: %s", key, e)
        try:
            await asyncio.to_thread(self.metadata_store.remove, key)
        except OSError as e:
            logger.warning("Could not drop old descriptor of %s: %s", key, e)

    async def _remove_content(self, key: CollectionKey) -> None:
        content_dir = self.metadata_store.content_dir(key)
        shares_dir = any(
            self.metadata_store.content_dir(other) == content_dir for other in self.index.keys()
        )
        if shares_dir:
            logger.info("Keeping %s; still used by another downloaded collection", content_dir)
            try:
                await asyncio.to_thread(self.metadata_store.remove, key)
            except OSError as e:
                logger.warning("Could not drop descriptor of %s: %s", key, e)
            return
        try:
            await asyncio.to_thread(self._fs.delete, content_dir)
        except OSError as e:
            logger.warning("Could not remove %s for %s: %s", content_dir, key, e)
