"""Main entry point for the story sync engine.

Commands:
    search [--language CODE]           list catalog collections
    download OWNER/LANGUAGE/ID         download or refresh a collection
    delete OWNER/LANGUAGE/ID           remove a downloaded collection
    check-updates                      report downloaded collections with newer versions
    languages                          list catalog languages
    export OWNER/LANGUAGE/ID PATH      write a downloaded collection to a share archive
    import PATH                        install a share archive
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import httpx

from story_sync.coordinators import RepositoryManager
from story_sync.core import CollectionKey, SyncError
from story_sync.io import (
    ArchiveFetcher,
    DatabaseManager,
    DownloadIndex,
    FileSystem,
    MetadataStore,
    StoryDecoder,
)
from story_sync.services import (
    CatalogClient,
    CommentsService,
    FavoritesService,
    LanguageService,
    MarkerService,
    NetworkService,
    ProgressService,
    SettingsManager,
    ThumbnailCache,
    VersionReconciler,
)

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    db: DatabaseManager
    repository: RepositoryManager
    progress: ProgressService
    markers: MarkerService
    favorites: FavoritesService
    comments: CommentsService
    languages: LanguageService

    async def close(self) -> None:
        await self.repository.close()
        self.db.close()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_engine(
    settings: SettingsManager, client: Optional[httpx.AsyncClient] = None
) -> Engine:
    """
    Wire every component following the Composition Root pattern.
    This is the only place that knows how to instantiate and connect them.
    """
    app_root = settings.get_app_root()
    file_system = FileSystem()

    # 1. Storage
    db = DatabaseManager(settings.get_database_path())
    db.ensure_schema()
    index = DownloadIndex(app_root / DownloadIndex.FILENAME, file_system)
    metadata_store = MetadataStore(app_root, file_system)

    # 2. Network
    catalog_url = settings.get_catalog_url()
    network = NetworkService(
        probe_url=f"{catalog_url}/api/v1/version",
        timeout=settings.get_http_timeout(),
        probe_timeout=settings.get_probe_timeout(),
        client=client,
    )
    catalog = CatalogClient(
        network, catalog_url, subject=settings.get_subject(), stage=settings.get_stage()
    )

    # 3. Coordinator (Dependency Injection)
    repository = RepositoryManager(
        db=db,
        index=index,
        metadata_store=metadata_store,
        fetcher=ArchiveFetcher(network, metadata_store, file_system),
        reconciler=VersionReconciler(network, catalog),
        catalog=catalog,
        network=network,
        thumbnails=ThumbnailCache(app_root / "thumbnails", network, file_system),
        decoder=StoryDecoder(),
        file_system=file_system,
    )

    return Engine(
        db=db,
        repository=repository,
        progress=ProgressService(db),
        markers=MarkerService(db),
        favorites=FavoritesService(db),
        comments=CommentsService(db),
        languages=LanguageService(db),
    )


async def cmd_search(engine: Engine, args) -> int:
    for collection in await engine.repository.search(language=args.language):
        flag = "*" if collection.is_downloaded else " "
        print(f"{flag} {collection.key}  {collection.version:<10} {collection.display_name}")
    return 0


async def cmd_download(engine: Engine, args) -> int:
    key = CollectionKey.parse(args.key)
    collection = await engine.repository.resolve(key.owner, key.language, key.collection_id)
    stored = await engine.repository.download(collection, version=args.version)
    print(f"Downloaded {stored.key} version {stored.version}")
    return 0


async def cmd_delete(engine: Engine, args) -> int:
    await engine.repository.delete(args.key)
    print(f"Deleted {args.key}")
    return 0


async def cmd_check_updates(engine: Engine, args) -> int:
    for collection in await engine.repository.get_downloaded():
        if await engine.repository.has_update(collection.key):
            print(f"Update available: {collection.key} (local {collection.version})")
    return 0


async def cmd_export(engine: Engine, args) -> int:
    path = await engine.repository.export_collection(
        args.key, args.path, include_user_data=not args.no_user_data
    )
    print(f"Exported {args.key} to {path}")
    return 0


async def cmd_import(engine: Engine, args) -> int:
    result = await engine.repository.import_collection(
        args.path, overwrite=args.overwrite, skip_version_check=args.skip_version_check
    )
    for issue in result.issues:
        print(f"{issue.kind.value}: {issue.message}")
    if result.skipped:
        print(f"Skipped {result.key}; use --overwrite to replace it")
        return 0
    if not result.success:
        return 1
    print(f"Imported {result.key} ({result.restored_user_items} reading-state items restored)")
    return 0


async def cmd_languages(engine: Engine, args) -> int:
    languages = await engine.repository.get_remote_languages() or engine.languages.list_languages()
    for language in languages:
        print(f"{language.code:<12} {language.native_name}")
    return 0


COMMANDS = {
    "search": cmd_search,
    "download": cmd_download,
    "delete": cmd_delete,
    "check-updates": cmd_check_updates,
    "languages": cmd_languages,
    "export": cmd_export,
    "import": cmd_import,
}


async def run(args, settings: SettingsManager) -> int:
    engine = build_engine(settings)
    try:
        return await COMMANDS[args.command](engine, args)
    except (SyncError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    finally:
        await engine.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Synchronize story collections with the remote catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command")

    p_search = sub.add_parser("search", help="List catalog collections")
    p_search.add_argument("-l", "--language", help="Language code filter")

    p_download = sub.add_parser("download", help="Download or refresh a collection")
    p_download.add_argument("key", help="owner/language/collection_id")
    p_download.add_argument("--version", help="Release tag to download")

    p_delete = sub.add_parser("delete", help="Remove a downloaded collection")
    p_delete.add_argument("key", help="owner/language/collection_id")

    sub.add_parser("check-updates", help="Report collections with newer versions")
    sub.add_parser("languages", help="List catalog languages")

    p_export = sub.add_parser("export", help="Write a collection to a share archive")
    p_export.add_argument("key", help="owner/language/collection_id")
    p_export.add_argument("path", help="Destination .zip file")
    p_export.add_argument(
        "--no-user-data", action="store_true", help="Leave out favourites, progress and notes"
    )

    p_import = sub.add_parser("import", help="Install a share archive")
    p_import.add_argument("path", help="Share archive to import")
    p_import.add_argument("--overwrite", action="store_true", help="Replace a downloaded copy")
    p_import.add_argument(
        "--skip-version-check", action="store_true", help="Accept any archive format version"
    )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = SettingsManager()
    configure_logging(settings.get_log_level())
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
