"""Tests for RepositoryManager - lifecycle, fallback and consistency rules."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from conftest import FakeCatalog, FlakyFileSystem, Harness, make_zip
from story_sync.core import (
    Collection,
    CollectionKey,
    CollectionState,
    DownloadError,
    ErrorKind,
    ImportIssueKind,
    NotFoundError,
    Recommendation,
    UserProgress,
)

KEY = CollectionKey("acme", "en", "obs")
FR_KEY = CollectionKey("acme", "fr", "obs-fr")
KIDS_KEY = CollectionKey("acme", "en", "obs-kids")


def snapshot(root):
    return {
        str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()
    }


def zip_requests(fake):
    return [r for r in fake.requests if r.url.path.endswith(".zip")]


async def _download_latest(h, key=KEY):
    collection = await h.manager.resolve(key.owner, key.language, key.collection_id)
    return await h.manager.download(collection)


class TestSearch:
    def test_online_merges_download_state(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.publish("acme", "fr", "obs-fr", "1.0.0")

        async def scenario():
            await _download_latest(harness)
            return await harness.manager.search()

        results = {c.key: c for c in asyncio.run(scenario())}
        assert set(results) == {KEY, FR_KEY}
        assert results[KEY].is_downloaded
        assert not results[FR_KEY].is_downloaded
        assert harness.manager.state(FR_KEY) is CollectionState.DISCOVERED

    def test_offline_returns_exactly_downloaded(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.publish("acme", "fr", "obs-fr", "1.0.0")
        fake_catalog.publish("other", "en", "stories", "3.0.0")

        async def scenario():
            await _download_latest(harness)
            await _download_latest(harness, FR_KEY)
            fake_catalog.online = False
            return await harness.manager.search(), await harness.manager.search(language="fr")

        everything, french = asyncio.run(scenario())
        assert {c.key for c in everything} == {KEY, FR_KEY}
        assert [c.key for c in french] == [FR_KEY]

    def test_offline_with_nothing_downloaded(self, harness, fake_catalog):
        fake_catalog.online = False
        assert asyncio.run(harness.manager.search()) == []

    def test_catalog_protocol_error_falls_back_to_local(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.publish("acme", "fr", "obs-fr", "1.0.0")
        asyncio.run(_download_latest(harness))
        fake_catalog.errors["/api/v1/catalog/search"] = lambda request: httpx.TooManyRedirects(
            "redirect loop", request=request
        )

        results = asyncio.run(harness.manager.search())

        assert [c.key for c in results] == [KEY]


class TestResolve:
    def test_remote_record_when_not_downloaded(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        collection = asyncio.run(harness.manager.resolve("acme", "en", "obs"))
        assert collection.key == KEY
        assert collection.version == "1.2.0"
        assert not collection.is_downloaded

    def test_not_found_anywhere(self, harness, fake_catalog):
        with pytest.raises(NotFoundError):
            asyncio.run(harness.manager.resolve("acme", "en", "missing"))
        fake_catalog.online = False
        with pytest.raises(NotFoundError) as excinfo:
            asyncio.run(harness.manager.resolve("acme", "en", "missing"))
        assert excinfo.value.kind is ErrorKind.NOT_FOUND

    def test_language_mismatch_is_not_found(self, harness, fake_catalog):
        fake_catalog.publish("acme", "fr", "obs", "1.0.0")
        with pytest.raises(NotFoundError):
            asyncio.run(harness.manager.resolve("acme", "en", "obs"))

    def test_corrupt_descriptor_is_repaired(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        harness.write_descriptor(KEY, "{ this is not json")
        harness.manager.clear_cache()
        fake_catalog.online = False

        collection = asyncio.run(harness.manager.resolve("acme", "en", "obs"))

        assert collection.key == KEY
        assert collection.is_downloaded
        data = harness.metadata_store.read_descriptor(KEY)
        assert (data["owner"], data["language"], data["id"]) == ("acme", "en", "obs")

    def test_mismatched_descriptor_is_repaired(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        harness.write_descriptor(KEY, {"id": "obs", "owner": "someone-else", "language": "en"})
        harness.manager.clear_cache()

        collection = asyncio.run(harness.manager.resolve("acme", "en", "obs"))

        assert collection.key == KEY
        assert harness.metadata_store.read_version(KEY) == "0.0.0"


class TestDownload:
    def test_example_scenario_update_flow(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.0.0")

        async def scenario():
            await _download_latest(harness)
            local_before = harness.metadata_store.read_version(KEY)
            fake_catalog.publish("acme", "en", "obs", "1.2.0")
            update_before = await harness.manager.has_update(KEY)
            state_before = harness.manager.state(KEY)
            stored = await harness.manager.download(Collection.minimal(KEY, is_downloaded=False))
            update_after = await harness.manager.has_update(KEY)
            return local_before, update_before, state_before, stored, update_after

        local_before, update_before, state_before, stored, update_after = asyncio.run(scenario())

        assert local_before == "1.0.0"
        assert update_before is True
        assert state_before is CollectionState.UPDATE_AVAILABLE
        assert stored.version == "1.2.0"
        descriptor = harness.metadata_store.read_descriptor(KEY)
        assert descriptor["version"] == "1.2.0"
        assert update_after is False
        assert harness.manager.state(KEY) is CollectionState.UP_TO_DATE

    def test_populates_store_and_thumbnail(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        stored = asyncio.run(_download_latest(harness))

        cid = str(KEY)
        assert stored.is_downloaded
        assert [s.title for s in harness.db.list_stories(cid)] == [
            "1. The Creation",
            "2. Sin Enters the World",
        ]
        assert harness.db.get_story(cid, 1).frame_numbers == [1, 2]
        assert harness.db.get_collection(KEY).is_downloaded
        assert harness.thumbnails.get(KEY) is not None
        assert (harness.root / "en" / "acme" / "content" / "01.md").exists()
        assert KEY in harness.index

    def test_download_is_idempotent(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")

        asyncio.run(_download_latest(harness))
        content_dir = harness.metadata_store.content_dir(KEY)
        first = snapshot(content_dir)
        fetches = len(zip_requests(fake_catalog))

        asyncio.run(_download_latest(harness))

        assert snapshot(content_dir) == first
        assert len(harness.index) == 1
        assert len(zip_requests(fake_catalog)) == fetches

    def test_concurrent_downloads_are_single_flight(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")

        async def scenario():
            collection = await harness.manager.resolve("acme", "en", "obs")
            return await asyncio.gather(
                harness.manager.download(collection), harness.manager.download(collection)
            )

        first, second = asyncio.run(scenario())
        assert first.version == second.version == "1.2.0"
        assert len(zip_requests(fake_catalog)) == 1

    def test_version_never_decreases(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        collection = asyncio.run(_download_latest(harness))
        stored = asyncio.run(harness.manager.download(collection, version="1.0.0"))
        assert stored.version == "1.2.0"
        assert harness.metadata_store.read_version(KEY) == "1.2.0"

    def test_offline_download_fails_cleanly(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        collection = asyncio.run(harness.manager.resolve("acme", "en", "obs"))
        fake_catalog.online = False
        with pytest.raises(DownloadError) as excinfo:
            asyncio.run(harness.manager.download(collection))
        assert excinfo.value.kind is ErrorKind.NETWORK_UNAVAILABLE
        assert KEY not in harness.index
        assert harness.manager.state(KEY) is CollectionState.DISCOVERED

    def test_corrupt_archive_is_not_marked(self, harness, fake_catalog):
        url = fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.archives[url] = b"definitely not a zip"
        with pytest.raises(DownloadError) as excinfo:
            asyncio.run(_download_latest(harness))
        assert excinfo.value.kind is ErrorKind.ARCHIVE_CORRUPT
        assert KEY not in harness.index
        assert harness.db.list_stories(str(KEY)) == []
        assert harness.thumbnails.get(KEY) is None

    def test_interrupted_extraction_then_retry(self, tmp_path):
        fake = FakeCatalog()
        fake.publish("acme", "en", "obs", "1.2.0")
        flaky = FlakyFileSystem(fail_on=2)
        h = Harness(tmp_path, fake, fetch_fs=flaky)
        try:
            with pytest.raises(DownloadError) as excinfo:
                asyncio.run(_download_latest(h))
            assert excinfo.value.kind is ErrorKind.FILESYSTEM_FAILURE
            assert KEY not in h.index
            assert not h.metadata_store.exists(KEY)
            assert h.manager.state(KEY) is CollectionState.DISCOVERED

            flaky.fail_on = None
            stored = asyncio.run(_download_latest(h))
            assert stored.version == "1.2.0"
            assert KEY in h.index
            assert (tmp_path / "en" / "acme" / "content" / "02.md").read_text().startswith("# 2.")
        finally:
            h.close()

    def test_failed_update_is_not_marked_downloaded(self, tmp_path):
        fake = FakeCatalog()
        fake.publish("acme", "en", "obs", "1.0.0", make_zip({"content/01.md": b"OLD1", "content/02.md": b"OLD2"}))
        flaky = FlakyFileSystem()
        h = Harness(tmp_path, fake, fetch_fs=flaky)
        try:
            asyncio.run(_download_latest(h))
            fake.publish("acme", "en", "obs", "1.2.0", make_zip({"content/01.md": b"NEW1", "content/02.md": b"NEW2"}))
            flaky.writes = 0
            flaky.fail_on = 2

            with pytest.raises(DownloadError) as excinfo:
                asyncio.run(h.manager.download(Collection.minimal(KEY, is_downloaded=False)))

            assert excinfo.value.kind is ErrorKind.FILESYSTEM_FAILURE
            assert KEY not in h.index
            assert not h.manager.is_downloaded(KEY)
            assert h.manager.state(KEY) is CollectionState.DISCOVERED
            assert not h.db.get_collection(KEY).is_downloaded
            assert not h.metadata_store.exists(KEY)
            assert asyncio.run(h.manager.get_downloaded()) == []

            flaky.fail_on = None
            stored = asyncio.run(h.manager.download(Collection.minimal(KEY, is_downloaded=False)))
            content = tmp_path / "en" / "acme" / "content"
            assert stored.version == "1.2.0"
            assert KEY in h.index
            assert (content / "01.md").read_bytes() == b"NEW1"
            assert (content / "02.md").read_bytes() == b"NEW2"
            assert h.metadata_store.read_version(KEY) == "1.2.0"
        finally:
            h.close()

    def test_update_keeps_old_copy_when_archive_is_unreachable(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.0.0")
        asyncio.run(_download_latest(harness))
        url = fake_catalog.publish("acme", "en", "obs", "1.2.0")
        del fake_catalog.archives[url]

        with pytest.raises(DownloadError) as excinfo:
            asyncio.run(harness.manager.download(Collection.minimal(KEY, is_downloaded=False)))

        assert excinfo.value.kind is ErrorKind.HTTP_STATUS
        assert KEY in harness.index
        assert harness.metadata_store.read_version(KEY) == "1.0.0"

    def test_thumbnail_failure_does_not_fail_download(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.errors["/avatars/"] = lambda request: httpx.DecodingError("bad gzip", request=request)

        stored = asyncio.run(_download_latest(harness))

        assert stored.is_downloaded
        assert KEY in harness.index
        assert harness.thumbnails.get(KEY) is None

    def test_thumbnail_is_recorded_in_descriptor(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        stored = asyncio.run(_download_latest(harness))
        assert stored.thumbnail.local_path == harness.thumbnails.path_for(KEY)
        assert harness.metadata_store.read_descriptor(KEY)["localThumbnail"] == str(
            harness.thumbnails.path_for(KEY)
        )

    def test_collections_sharing_a_directory_keep_their_versions(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.publish("acme", "en", "obs-kids", "1.0.0")

        async def scenario():
            await _download_latest(harness)
            await _download_latest(harness, KIDS_KEY)
            harness.manager.clear_cache()
            obs = await harness.manager.resolve("acme", "en", "obs")
            kids = await harness.manager.resolve("acme", "en", "obs-kids")
            return obs, kids, await harness.manager.has_update(KEY), await harness.manager.has_update(KIDS_KEY)

        obs, kids, obs_update, kids_update = asyncio.run(scenario())

        assert (obs.version, kids.version) == ("1.2.0", "1.0.0")
        assert obs_update is False
        assert kids_update is False
        assert harness.metadata_store.read_version(KEY) == "1.2.0"
        assert harness.metadata_store.read_version(KIDS_KEY) == "1.0.0"


class TestDelete:
    def test_delete_cascades_everywhere(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        cid = str(KEY)
        harness.db.add_marker(cid, 1, 1)
        harness.db.add_comment(cid, 1, 2, "so dark")
        harness.db.toggle_frame_favorite(cid, 1, 1)

        asyncio.run(harness.manager.delete(KEY))

        assert KEY not in harness.index
        assert not harness.metadata_store.content_dir(KEY).exists()
        assert harness.thumbnails.get(KEY) is None
        assert harness.db.get_collection(KEY) is None
        assert harness.db.list_stories(cid) == []
        assert harness.db.list_frames(cid, 1) == []
        assert harness.db.list_markers() == []
        assert harness.db.count_comments(cid) == 0
        assert harness.db.list_favorite_frames() == []
        assert harness.manager.state(KEY) is CollectionState.DELETED

    def test_delete_unknown_collection_succeeds(self, harness):
        asyncio.run(harness.manager.delete("acme/en/never-downloaded"))

    def test_shared_content_dir_is_kept(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        fake_catalog.publish("acme", "en", "obs-kids", "1.0.0")
        asyncio.run(_download_latest(harness))
        asyncio.run(_download_latest(harness, KIDS_KEY))

        asyncio.run(harness.manager.delete(KEY))

        assert harness.metadata_store.content_dir(KEY).exists()
        assert harness.manager.is_downloaded("acme/en/obs-kids")
        assert not harness.metadata_store.exists(KEY)
        assert harness.metadata_store.read_version(KIDS_KEY) == "1.0.0"
        assert asyncio.run(harness.manager.has_update(KIDS_KEY)) is False


class TestHasUpdate:
    def test_offline_is_false(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.0.0")
        asyncio.run(_download_latest(harness))
        fake_catalog.publish("acme", "en", "obs", "2.0.0")
        fake_catalog.online = False
        assert asyncio.run(harness.manager.has_update(KEY)) is False

    def test_not_downloaded_is_false(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "2.0.0")
        assert asyncio.run(harness.manager.has_update(KEY)) is False

    def test_missing_remote_version_is_false(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.0.0")
        asyncio.run(_download_latest(harness))
        fake_catalog.publish("acme", "en", "obs", None)
        assert asyncio.run(harness.manager.has_update(KEY)) is False

    def test_undecodable_catalog_response_is_false(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.0.0")
        asyncio.run(_download_latest(harness))
        fake_catalog.publish("acme", "en", "obs", "2.0.0")
        fake_catalog.errors["/api/v1/catalog/entry/"] = lambda request: httpx.DecodingError(
            "bad gzip", request=request
        )
        assert asyncio.run(harness.manager.has_update(KEY)) is False


class TestLocalState:
    def test_get_downloaded_and_state(self, harness, fake_catalog):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        assert harness.manager.state(KEY) is CollectionState.UNKNOWN
        asyncio.run(_download_latest(harness))
        downloaded = asyncio.run(harness.manager.get_downloaded())
        assert [c.key for c in downloaded] == [KEY]
        assert harness.manager.is_downloaded(KEY)
        assert harness.manager.state(KEY) is CollectionState.DOWNLOADED

    def test_remote_languages(self, harness, fake_catalog):
        languages = asyncio.run(harness.manager.get_remote_languages())
        assert {l.code for l in languages} == {"en", "ar"}
        assert harness.db.get_language("ar").is_rtl
        fake_catalog.online = False
        assert asyncio.run(harness.manager.get_remote_languages()) == []

    def test_constructor_requires_collaborators(self, harness):
        from story_sync.coordinators import RepositoryManager

        with pytest.raises(ValueError):
            RepositoryManager(
                db=None,
                index=harness.index,
                metadata_store=harness.metadata_store,
                fetcher=harness.fetcher,
                reconciler=harness.manager.reconciler,
                catalog=harness.catalog,
                network=harness.network,
                thumbnails=harness.thumbnails,
            )


def _export_versions(h, fake, directory):
    """Download and export 1.0.0, then 1.2.0; the local copy ends at 1.2.0."""
    fake.publish("acme", "en", "obs", "1.0.0")
    asyncio.run(_download_latest(h))
    old = asyncio.run(h.manager.export_collection(KEY, directory / "obs-1.0.0.zip"))
    fake.publish("acme", "en", "obs", "1.2.0")
    asyncio.run(h.manager.download(Collection.minimal(KEY, is_downloaded=False)))
    new = asyncio.run(h.manager.export_collection(KEY, directory / "obs-1.2.0.zip"))
    return old, new


class TestSharing:
    def test_export_delete_import_restores_everything(self, harness, fake_catalog, tmp_path):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        cid = str(KEY)
        read_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        harness.db.add_marker(cid, 1, 1, "light")
        harness.db.add_comment(cid, 1, 2, "so dark")
        harness.db.toggle_frame_favorite(cid, 1, 1)
        harness.db.save_progress(UserProgress(cid, 1, 2, 2, read_at))
        path = asyncio.run(harness.manager.export_collection(KEY, tmp_path / "exports" / "obs.zip"))
        asyncio.run(harness.manager.delete(KEY))
        fake_catalog.online = False

        result = asyncio.run(harness.manager.import_collection(path))

        assert result.success and not result.skipped
        assert result.key == KEY
        assert result.issues == []
        assert result.restored_user_items == 4
        assert KEY in harness.index
        assert harness.manager.state(KEY) is CollectionState.DOWNLOADED
        assert harness.metadata_store.read_version(KEY) == "1.2.0"
        assert harness.db.get_collection(KEY).is_downloaded
        assert [s.title for s in harness.db.list_stories(cid)] == [
            "1. The Creation",
            "2. Sin Enters the World",
        ]
        assert harness.db.get_frame(cid, 1, 2).text == "The earth was dark and empty."
        assert harness.db.get_frame(cid, 1, 1).is_favorite
        assert [m.note for m in harness.db.list_markers()] == ["light"]
        assert harness.db.count_comments(cid) == 1
        assert harness.db.get_progress(cid, 1).last_read == read_at
        assert harness.thumbnails.get(KEY) is not None

    def test_export_without_user_data(self, harness, fake_catalog, tmp_path):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        harness.db.add_marker(str(KEY), 1, 1, "light")

        path = asyncio.run(
            harness.manager.export_collection(KEY, tmp_path / "obs.zip", include_user_data=False)
        )

        assert harness.manager.share.read(path.read_bytes()).manifest.user_data is None

    def test_same_version_is_skipped_as_duplicate(self, harness, fake_catalog, tmp_path):
        fake_catalog.publish("acme", "en", "obs", "1.2.0")
        asyncio.run(_download_latest(harness))
        path = asyncio.run(harness.manager.export_collection(KEY, tmp_path / "obs.zip"))

        result = asyncio.run(harness.manager.import_collection(path))

        assert result.skipped and not result.success
        [issue] = result.issues
        assert issue.kind is ImportIssueKind.DUPLICATE_COLLECTION
        assert issue.recommendation is Recommendation.SKIP
        assert issue.kind.can_retry

    def test_older_archive_needs_overwrite(self, harness, fake_catalog, tmp_path):
        old, _ = _export_versions(harness, fake_catalog, tmp_path)

        skipped = asyncio.run(harness.manager.import_collection(old))
        assert skipped.skipped
        [issue] = skipped.issues
        assert issue.kind is ImportIssueKind.VERSION_CONFLICT_OLDER
        assert (issue.existing_version, issue.import_version) == ("1.2.0", "1.0.0")
        assert issue.recommendation is Recommendation.SKIP
        assert harness.metadata_store.read_version(KEY) == "1.2.0"

        forced = asyncio.run(harness.manager.import_collection(old, overwrite=True))
        assert forced.success
        assert [i.kind for i in forced.issues] == [ImportIssueKind.VERSION_CONFLICT_OLDER]
        assert harness.metadata_store.read_version(KEY) == "1.0.0"
        assert KEY in harness.index

    def test_newer_archive_recommends_overwrite(self, harness, fake_catalog, tmp_path):
        old, new = _export_versions(harness, fake_catalog, tmp_path)
        asyncio.run(harness.manager.import_collection(old, overwrite=True))

        skipped = asyncio.run(harness.manager.import_collection(new))
        [issue] = skipped.issues
        assert issue.kind is ImportIssueKind.VERSION_CONFLICT_NEWER
        assert issue.recommendation is Recommendation.OVERWRITE

        updated = asyncio.run(harness.manager.import_collection(new, overwrite=True))
        assert updated.success and updated.issues == []
        assert harness.metadata_store.read_version(KEY) == "1.2.0"

    def test_missing_file_is_a_read_error(self, harness, tmp_path):
        result = asyncio.run(harness.manager.import_collection(tmp_path / "absent.zip"))

        assert not result.success
        assert [i.kind for i in result.issues] == [ImportIssueKind.FILE_READ_ERROR]

    def test_corrupt_archive_is_reported(self, harness, tmp_path):
        path = tmp_path / "broken.zip"
        path.write_bytes(b"PK\x03\x04 truncated")

        result = asyncio.run(harness.manager.import_collection(path))

        assert not result.success
        assert [i.kind for i in result.issues] == [ImportIssueKind.CORRUPTED_DATA]
        assert harness.index.keys() == []

    def test_export_requires_downloaded_collection(self, harness, tmp_path):
        with pytest.raises(NotFoundError):
            asyncio.run(harness.manager.export_collection(KEY, tmp_path / "obs.zip"))
        assert not (tmp_path / "obs.zip").exists()

    def test_failed_import_is_not_marked_downloaded(self, tmp_path):
        fake = FakeCatalog()
        flaky = FlakyFileSystem()
        h = Harness(tmp_path / "library", fake, fetch_fs=flaky)
        try:
            old, new = _export_versions(h, fake, tmp_path)
            asyncio.run(h.manager.import_collection(old, overwrite=True))
            flaky.writes = 0
            flaky.fail_on = 2

            result = asyncio.run(h.manager.import_collection(new, overwrite=True))

            assert not result.success
            assert [i.kind for i in result.issues] == [ImportIssueKind.FILE_WRITE_ERROR]
            assert KEY not in h.index
            assert h.manager.state(KEY) is CollectionState.DISCOVERED
            assert not h.metadata_store.exists(KEY)

            flaky.fail_on = None
            assert asyncio.run(h.manager.import_collection(new)).success
            assert h.metadata_store.read_version(KEY) == "1.2.0"
        finally:
            h.close()
