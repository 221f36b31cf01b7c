"""Version Reconciler - decides whether a downloaded collection is stale."""

import logging
import re
from typing import Optional, Tuple

from story_sync.core import INITIAL_VERSION, CollectionKey, SyncError

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^[vV]?(\d+)(?:\.(\d+))?(?:\.(\d+))?$")


def parse_version(text: Optional[str]) -> Tuple[int, int, int]:
    """Parse ``major.minor.patch``; malformed input is ``(0, 0, 0)``.

    A leading ``v`` is allowed, missing minor/patch parts count as 0, and any
    pre-release or build suffix after ``-``/``+`` is ignored.
    """
    if not isinstance(text, str):
        return (0, 0, 0)
    core = re.split(r"[-+]", text.strip(), maxsplit=1)[0]
    match = _VERSION_RE.match(core)
    if match is None:
        return (0, 0, 0)
    return tuple(int(part) if part else 0 for part in match.groups())


def is_newer(local: Optional[str], remote: Optional[str]) -> bool:
    """True only if ``remote`` strictly exceeds ``local``."""
    return parse_version(remote) > parse_version(local or INITIAL_VERSION)


class VersionReconciler:
    """Side-effect-free update check against the remote catalog.

    ``has_update`` never raises: offline, lookup failures and missing or
    malformed remote versions all mean "no update".
    """

    def __init__(self, network, catalog) -> None:
        if network is None:
            raise ValueError("network must not be None")
        if catalog is None:
            raise ValueError("CatalogClient must not be None")
        self.network = network
        self.catalog = catalog

    async def remote_version(self, key: CollectionKey) -> Optional[str]:
        """Remote release tag for ``key``, or None if it cannot be determined."""
        if not await self.network.is_online():
            return None
        try:
            entry = await self.catalog.get_entry(key.owner, key.collection_id)
        except SyncError as e:
            logger.warning("Could not reconcile %s: %s", key, e)
            return None
        return entry.version

    async def has_update(self, key: CollectionKey, local_version: Optional[str]) -> bool:
        remote = await self.remote_version(key)
        if remote is None:
            return False
        newer = is_newer(local_version, remote)
        logger.debug("%s local=%s remote=%s newer=%s", key, local_version, remote, newer)
        return newer
