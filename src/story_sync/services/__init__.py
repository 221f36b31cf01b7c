"""Services layer - business logic and external integrations."""

from story_sync.services.network_service import FetchResponse, NetworkService
from story_sync.services.catalog_client import CatalogClient, CatalogEntry
from story_sync.services.version_reconciler import VersionReconciler, is_newer, parse_version
from story_sync.services.thumbnail_cache import ThumbnailCache
from story_sync.services.settings_manager import SettingsManager

# Reading-state services
from story_sync.services.progress_service import ProgressService
from story_sync.services.marker_service import MarkerService
from story_sync.services.favorites_service import FavoritesService
from story_sync.services.comments_service import CommentsService
from story_sync.services.language_service import LanguageService
from story_sync.services.user_data_backup import UserDataBackup

__all__ = [
    "FetchResponse",
    "NetworkService",
    "CatalogClient",
    "CatalogEntry",
    "VersionReconciler",
    "parse_version",
    "is_newer",
    "ThumbnailCache",
    "SettingsManager",
    "ProgressService",
    "MarkerService",
    "FavoritesService",
    "CommentsService",
    "LanguageService",
    "UserDataBackup",
]
