"""Settings Manager - Handles engine location, catalog and network configuration."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class SettingsManager:
    """
    Manages engine settings.

    Values come from the process environment, seeded from a .env file in the
    project root. Every getter falls back to a default when unset or invalid.
    """

    DEFAULT_CATALOG_URL = "https://git.door43.org"
    DEFAULT_SUBJECT = "Open Bible Stories"
    DEFAULT_STAGE = "prod"
    DEFAULT_HTTP_TIMEOUT = 30.0
    DEFAULT_PROBE_TIMEOUT = 5.0
    DEFAULT_LOG_LEVEL = "INFO"

    def __init__(self, project_root: Optional[Path] = None):
        """
        Initialize settings manager.

        Args:
            project_root: Path to project root where .env is located.
                         If None, uses the current working directory.
        """
        if project_root is None:
            project_root = Path.cwd()

        self._project_root = Path(project_root)
        load_dotenv(dotenv_path=self._project_root / ".env")

    def get_app_root(self) -> Path:
        """Directory holding content, thumbnails, the index and the database."""
        value = self._get("STORY_SYNC_APP_ROOT")
        return Path(value).expanduser() if value else Path.home() / ".story_sync"

    def get_database_path(self) -> Path:
        return self.get_app_root() / "story_sync.db"

    def get_catalog_url(self) -> str:
        return (self._get("STORY_SYNC_CATALOG_URL") or self.DEFAULT_CATALOG_URL).rstrip("/")

    def get_subject(self) -> str:
        return self._get("STORY_SYNC_SUBJECT") or self.DEFAULT_SUBJECT

    def get_stage(self) -> str:
        return self._get("STORY_SYNC_STAGE") or self.DEFAULT_STAGE

    def get_http_timeout(self) -> float:
        return self._get_float("STORY_SYNC_HTTP_TIMEOUT", self.DEFAULT_HTTP_TIMEOUT)

    def get_probe_timeout(self) -> float:
        return self._get_float("STORY_SYNC_PROBE_TIMEOUT", self.DEFAULT_PROBE_TIMEOUT)

    def get_log_level(self) -> str:
        return (self._get("STORY_SYNC_LOG_LEVEL") or self.DEFAULT_LOG_LEVEL).upper()

    def reload_env(self) -> None:
        """Reload environment variables from .env file."""
        load_dotenv(dotenv_path=self._project_root / ".env", override=True)

    @staticmethod
    def _get(name: str) -> Optional[str]:
        value = os.getenv(name)
        return value.strip() if value and value.strip() else None

    def _get_float(self, name: str, default: float) -> float:
        value = self._get(name)
        if value is None:
            return default
        try:
            parsed = float(value)
        except ValueError:
            return default
        return parsed if parsed > 0 else default
