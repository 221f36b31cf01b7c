import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from story_sync.core import CollectionKey, ErrorKind, SyncError
from story_sync.services import VersionReconciler, is_newer, parse_version

KEY = CollectionKey("acme", "en", "obs")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1.2.3", (1, 2, 3)),
        ("v1.2", (1, 2, 0)),
        ("2", (2, 0, 0)),
        ("1.2.3-beta.1", (1, 2, 3)),
        ("1.0.0+build5", (1, 0, 0)),
        ("", (0, 0, 0)),
        ("latest", (0, 0, 0)),
        ("1.2.3.4", (0, 0, 0)),
        (None, (0, 0, 0)),
    ],
)
def test_parse_version(text, expected):
    assert parse_version(text) == expected


def test_is_newer_is_strict():
    assert is_newer("1.0.0", "1.2.0")
    assert is_newer("1.9.0", "1.10.0")
    assert not is_newer("1.2.0", "1.2.0")
    assert not is_newer("1.2.0", "1.1.9")
    assert not is_newer("1.0.0", "garbage")
    assert is_newer(None, "0.0.1")


def _reconciler(online=True, version="1.2.0", error=None):
    network = MagicMock()
    network.is_online = AsyncMock(return_value=online)
    catalog = MagicMock()
    if error is not None:
        catalog.get_entry = AsyncMock(side_effect=error)
    else:
        catalog.get_entry = AsyncMock(return_value=MagicMock(version=version))
    return VersionReconciler(network, catalog), catalog


def test_has_update_when_remote_newer():
    reconciler, catalog = _reconciler(version="1.2.0")
    assert asyncio.run(reconciler.has_update(KEY, "1.0.0")) is True
    catalog.get_entry.assert_awaited_once_with("acme", "obs")


def test_offline_never_touches_catalog():
    reconciler, catalog = _reconciler(online=False)
    assert asyncio.run(reconciler.has_update(KEY, "1.0.0")) is False
    catalog.get_entry.assert_not_awaited()


def test_lookup_failure_means_no_update():
    reconciler, _ = _reconciler(error=SyncError(ErrorKind.HTTP_STATUS, "boom", status=500))
    assert asyncio.run(reconciler.has_update(KEY, "1.0.0")) is False


def test_missing_remote_version_means_no_update():
    reconciler, _ = _reconciler(version=None)
    assert asyncio.run(reconciler.has_update(KEY, "0.0.0")) is False


def test_requires_collaborators():
    with pytest.raises(ValueError):
        VersionReconciler(None, MagicMock())
