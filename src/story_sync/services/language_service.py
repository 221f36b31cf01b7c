"""Language Service - catalog languages cached in the content store."""

from typing import Any, Dict, List, Optional

from story_sync.core import Language, LanguageStats
from story_sync.io import DatabaseManager

from .catalog_client import language_from_json


class LanguageService:
    def __init__(self, db: DatabaseManager) -> None:
        if db is None:
            raise ValueError("DatabaseManager must not be None")
        self._db = db

    def save_language(self, language: Language) -> Language:
        return self._db.save_language(language)

    def save_from_catalog(self, data: Dict[str, Any]) -> Language:
        """Store a language from a catalog JSON object.

        Accepts both the short catalog keys (``lc``, ``ln``, ``ang``, ``ld``,
        ``gw``, ``lr``, ``hc``, ``cc``, ``alt``) and the long entry keys
        (``language``, ``language_title``, ``language_direction``,
        ``language_is_gl``).

        Raises:
            ValueError: If no language code is present.
        """
        language = language_from_json(data)
        if language is None:
            raise ValueError("catalog language has no code")
        return self._db.save_language(language)

    def get_language(self, code: str) -> Optional[Language]:
        return self._db.get_language(code)

    def list_languages(self, with_collections_only: bool = False) -> List[Language]:
        if with_collections_only:
            return self._db.list_languages_with_collections()
        return self._db.list_languages()

    def gateway_languages(self) -> List[Language]:
        return self._db.list_gateway_languages()

    def search(self, query: str) -> List[Language]:
        if not query or not query.strip():
            return self.list_languages()
        return self._db.search_languages(query.strip())

    def get_language_stats(self) -> LanguageStats:
        return self._db.get_language_stats()
