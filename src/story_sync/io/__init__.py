"""I/O layer - Data access for persistence and file operations."""

from .archive_fetcher import ArchiveFetcher, ExtractionResult
from .database_manager import DatabaseManager
from .download_index import DownloadIndex
from .file_system import FileSystem
from .metadata_store import MetadataStore
from .share_archive import ShareArchive, SharedCollection, ShareManifest
from .story_decoder import DecodedContent, StoryDecoder

__all__ = [
    "ArchiveFetcher",
    "ExtractionResult",
    "DatabaseManager",
    "DownloadIndex",
    "FileSystem",
    "MetadataStore",
    "ShareArchive",
    "SharedCollection",
    "ShareManifest",
    "StoryDecoder",
    "DecodedContent",
]
