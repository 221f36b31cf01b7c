"""Remote catalog client - search, entry lookup and language listing."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from story_sync.core import (
    Collection,
    CollectionKey,
    ErrorKind,
    Language,
    SyncError,
    ThumbnailRef,
)

from .network_service import NetworkService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """One published collection as described by the remote catalog.

    ``version`` is None when the entry has no release tag.
    """

    name: str
    owner: str
    language: str
    title: str
    version: Optional[str] = None
    description: Optional[str] = None
    published_at: Optional[str] = None
    zipball_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    owner_full_name: Optional[str] = None
    subject: Optional[str] = None
    contents_url: Optional[str] = None
    language_title: Optional[str] = None
    language_direction: Optional[str] = None
    language_is_gateway: bool = False

    @property
    def key(self) -> CollectionKey:
        return CollectionKey(self.owner, self.language, self.name)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CatalogEntry":
        """Parse a catalog JSON object.

        Raises:
            ValueError: If name, owner or language is missing.
        """
        if not isinstance(data, dict):
            raise ValueError("catalog entry is not an object")
        name = data.get("name")
        owner = data.get("owner")
        if isinstance(owner, dict):
            owner = owner.get("username") or owner.get("login")
        language = data.get("language")
        if not (name and owner and language):
            raise ValueError(f"catalog entry missing identity: {data.get('full_name') or name}")

        release = data.get("release") or {}
        repo = data.get("repo") or {}
        repo_owner = repo.get("owner") or {}
        tag = release.get("tag_name")
        return cls(
            name=name,
            owner=owner,
            language=language,
            title=data.get("title") or name,
            version=tag if isinstance(tag, str) and tag.strip() else None,
            description=data.get("description") or repo.get("description"),
            published_at=release.get("published_at") or data.get("released"),
            zipball_url=data.get("zipball_url") or release.get("zipball_url"),
            thumbnail_url=repo.get("avatar_url") or None,
            owner_full_name=repo_owner.get("full_name") or None,
            subject=data.get("subject"),
            contents_url=data.get("contents_url"),
            language_title=data.get("language_title"),
            language_direction=data.get("language_direction"),
            language_is_gateway=bool(data.get("language_is_gl", False)),
        )

    def to_collection(self, is_downloaded: bool = False, local_thumbnail=None) -> Collection:
        published = None
        if self.published_at:
            try:
                published = datetime.fromisoformat(self.published_at.replace("Z", "+00:00"))
            except ValueError:
                published = None
        return Collection(
            key=self.key,
            display_name=self.title,
            version=self.version or "0.0.0",
            description=self.description,
            last_updated=published or datetime.now(timezone.utc),
            is_downloaded=is_downloaded,
            thumbnail=ThumbnailRef(remote_url=self.thumbnail_url, local_path=local_thumbnail),
            owner_full_name=self.owner_full_name,
            subject=self.subject,
            contents_url=self.contents_url,
        )

    def to_language(self) -> Language:
        title = self.language_title or self.language
        return Language(
            code=self.language,
            native_name=title,
            english_name=title,
            direction=self.language_direction or "ltr",
            is_gateway=self.language_is_gateway,
        )


class CatalogClient:
    """Queries ``{base_url}/api/v1/catalog`` for published collections.

    All methods raise ``SyncError`` (NETWORK_UNAVAILABLE or HTTP_STATUS) on
    failure; callers decide how to fall back.
    """

    def __init__(
        self,
        network: NetworkService,
        base_url: str,
        subject: str = "Open Bible Stories",
        stage: str = "prod",
    ) -> None:
        if network is None:
            raise ValueError("NetworkService must not be None")
        self.network = network
        self.base_url = base_url.rstrip("/")
        self.subject = subject
        self.stage = stage

    @property
    def probe_url(self) -> str:
        return f"{self.base_url}/api/v1/version"

    async def search(
        self, language: Optional[str] = None, owner: Optional[str] = None
    ) -> List[CatalogEntry]:
        params: Dict[str, Any] = {"subject": self.subject, "stage": self.stage}
        if language:
            params["lang"] = language
        if owner:
            params["owner"] = owner
        payload = await self.network.fetch_json(
            f"{self.base_url}/api/v1/catalog/search", params=params
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise SyncError(ErrorKind.HTTP_STATUS, "Catalog search returned no data list")
        entries = []
        for item in data:
            try:
                entries.append(CatalogEntry.from_json(item))
            except ValueError as e:
                logger.warning("Skipping malformed catalog entry: %s", e)
        return entries

    async def get_entry(self, owner: str, repo: str, ref: str = "master") -> CatalogEntry:
        payload = await self.network.fetch_json(
            f"{self.base_url}/api/v1/catalog/entry/{owner}/{repo}/{ref}"
        )
        try:
            return CatalogEntry.from_json(payload)
        except ValueError as e:
            raise SyncError(ErrorKind.HTTP_STATUS, f"Malformed catalog entry: {e}") from e

    async def list_languages(self) -> List[Language]:
        payload = await self.network.fetch_json(
            f"{self.base_url}/api/v1/catalog/list/languages",
            params={"subject": self.subject, "stage": self.stage},
        )
        data = payload.get("data") if isinstance(payload, dict) else payload
        languages = []
        for item in data or []:
            language = language_from_json(item)
            if language is not None:
                languages.append(language)
        return sorted(languages, key=lambda lang: lang.code)

    def zipball_url(self, owner: str, repo: str, ref: str = "master") -> str:
        """Archive URL used when the entry carries none."""
        return f"{self.base_url}/{owner}/{repo}/archive/{ref}.zip"


def language_from_json(item: Any) -> Optional[Language]:
    """Language from a catalog list item or entry; None if it has no code."""
    if isinstance(item, str):
        return Language(code=item, native_name=item, english_name=item)
    if not isinstance(item, dict):
        return None
    code = item.get("lc") or item.get("language") or item.get("code")
    if not code:
        return None
    native = item.get("ln") or item.get("language_title") or code
    return Language(
        code=code,
        native_name=native,
        english_name=item.get("ang") or native,
        direction=item.get("ld") or item.get("language_direction") or "ltr",
        is_gateway=bool(item.get("gw", item.get("language_is_gl", False))),
        region=item.get("lr") or "",
        home_country=item.get("hc") or "",
        country_codes=list(item.get("cc") or []),
        alternate_names=list(item.get("alt") or []),
    )
