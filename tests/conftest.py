"""Shared fixtures: a fake remote catalog served through httpx.MockTransport."""

import io
import json
import zipfile
from typing import Callable, Dict, Optional

import httpx
import pytest

from story_sync.coordinators import RepositoryManager
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
    NetworkService,
    ThumbnailCache,
    VersionReconciler,
)

BASE_URL = "https://catalog.test"

STORY_ONE = """# 1. The Creation

![OBS Image](https://cdn.example.org/obs/01-01.jpg)

This is how the beginning of everything happened.

![OBS Image](https://cdn.example.org/obs/01-02.jpg)

The earth was dark and empty.

_A Bible story from: Genesis 1-2_
"""

STORY_TWO = """# 2. Sin Enters the World

![OBS Image](https://cdn.example.org/obs/02-01.jpg)

Adam and his wife were very happy.

_A Bible story from: Genesis 3_
"""


def make_zip(files: Dict[str, bytes], root: Optional[str] = "obs-master") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        if root:
            archive.writestr(f"{root}/", b"")
        for name, data in files.items():
            archive.writestr(f"{root}/{name}" if root else name, data)
    return buffer.getvalue()


def story_archive() -> bytes:
    return make_zip(
        {
            "manifest.yaml": b"dublin_core:\n  identifier: obs\n",
            "content/01.md": STORY_ONE.encode("utf-8"),
            "content/02.md": STORY_TWO.encode("utf-8"),
            "LICENSE.md": b"CC BY-SA 4.0\n",
        }
    )


class FakeCatalog:
    """In-memory catalog server; flip ``online`` to simulate connectivity loss."""

    def __init__(self):
        self.online = True
        self.entries: Dict[tuple, dict] = {}
        self.archives: Dict[str, bytes] = {}
        self.thumbnail = b"\xff\xd8\xff\xe0" + b"\x00" * 256
        self.requests = []
        # path prefix -> callable(request) returning the exception to raise
        self.errors: Dict[str, Callable[[httpx.Request], Exception]] = {}

    def publish(self, owner: str, language: str, name: str, version: Optional[str], archive=None):
        zip_url = f"{BASE_URL}/{owner}/{name}/archive/{version or 'master'}.zip"
        release = {"tag_name": version, "published_at": "2024-01-02T03:04:05Z"} if version else None
        self.entries[(owner, name)] = {
            "name": name,
            "owner": owner,
            "language": language,
            "title": f"{name.upper()} ({language})",
            "subject": "Open Bible Stories",
            "language_title": "English" if language == "en" else language,
            "language_direction": "ltr",
            "language_is_gl": True,
            "release": release,
            "zipball_url": zip_url,
            "contents_url": f"{BASE_URL}/api/v1/repos/{owner}/{name}/contents",
            "repo": {
                "description": f"{name} stories",
                "avatar_url": f"{BASE_URL}/avatars/{owner}.png",
                "owner": {"full_name": owner.title()},
            },
        }
        self.archives[zip_url] = archive if archive is not None else story_archive()
        return zip_url

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        path = request.url.path
        for prefix, make_error in self.errors.items():
            if path.startswith(prefix):
                raise make_error(request)
        if path == "/api/v1/version":
            return httpx.Response(200, json={"version": "1.21"})
        if path == "/api/v1/catalog/search":
            lang = request.url.params.get("lang")
            data = [e for e in self.entries.values() if lang is None or e["language"] == lang]
            return httpx.Response(200, json={"ok": True, "data": data})
        if path.startswith("/api/v1/catalog/entry/"):
            owner, name = path.split("/")[5:7]
            entry = self.entries.get((owner, name))
            if entry is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=entry)
        if path == "/api/v1/catalog/list/languages":
            return httpx.Response(
                200,
                json={"data": [{"lc": "en", "ln": "English", "gw": True}, {"lc": "ar", "ln": "العربية", "ld": "rtl"}]},
            )
        if path.startswith("/avatars/"):
            return httpx.Response(200, content=self.thumbnail)
        url = str(request.url)
        if url in self.archives:
            return httpx.Response(200, content=self.archives[url])
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FlakyFileSystem(FileSystem):
    """Fails the Nth ``write_file`` call with ``OSError``."""

    def __init__(self, fail_on: Optional[int] = None):
        self.fail_on = fail_on
        self.writes = 0

    def write_file(self, path, data):
        self.writes += 1
        if self.fail_on is not None and self.writes == self.fail_on:
            raise OSError("No space left on device")
        super().write_file(path, data)


class Harness:
    """Every engine component wired against a temp dir and a FakeCatalog."""

    def __init__(self, root, catalog: FakeCatalog, fetch_fs: Optional[FileSystem] = None):
        self.root = root
        self.fake = catalog
        self.fs = FileSystem()
        self.db = DatabaseManager(root / "store.db")
        self.db.ensure_schema()
        self.index = DownloadIndex(root / DownloadIndex.FILENAME, self.fs)
        self.metadata_store = MetadataStore(root, self.fs)
        self.network = NetworkService(
            f"{BASE_URL}/api/v1/version", retry_delay=0, client=catalog.client()
        )
        self.catalog = CatalogClient(self.network, BASE_URL)
        self.thumbnails = ThumbnailCache(root / "thumbnails", self.network, self.fs)
        self.fetcher = ArchiveFetcher(self.network, self.metadata_store, fetch_fs or self.fs)
        self.manager = RepositoryManager(
            db=self.db,
            index=self.index,
            metadata_store=self.metadata_store,
            fetcher=self.fetcher,
            reconciler=VersionReconciler(self.network, self.catalog),
            catalog=self.catalog,
            network=self.network,
            thumbnails=self.thumbnails,
            decoder=StoryDecoder(),
            file_system=self.fs,
        )

    def write_descriptor(self, key, payload):
        path = self.metadata_store.descriptor_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
        return path

    def close(self):
        self.db.close()


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def harness(tmp_path, fake_catalog):
    h = Harness(tmp_path, fake_catalog)
    yield h
    h.close()
