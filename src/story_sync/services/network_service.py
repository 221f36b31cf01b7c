"""Async HTTP access for catalog queries, archives and thumbnails."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from story_sync.core import ErrorKind, SyncError

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    status: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class NetworkService:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Parameters
    ----------
    probe_url : str
        URL hit with a HEAD request by ``is_online``.
    timeout : float
        Per-request timeout in seconds.
    probe_timeout : float
        Timeout for the reachability probe; a timeout means offline.
    max_retries : int
        Attempts for transport errors before giving up.
    retry_delay : float
        Base backoff in seconds (doubled per attempt).
    client : httpx.AsyncClient, optional
        Injected client, e.g. one built on ``httpx.MockTransport``.
    """

    def __init__(
        self,
        probe_url: str,
        timeout: float = 30,
        probe_timeout: float = 5,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NetworkService":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def is_online(self) -> bool:
        """Lightweight reachability probe; any error or timeout means offline."""
        try:
            r = await self._client.head(self.probe_url, timeout=self.probe_timeout)
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError) as e:
            logger.debug("Reachability probe failed: %s", e)
            return False
        return r.is_success

    async def fetch(self, url: str, params: Optional[Dict[str, Any]] = None) -> FetchResponse:
        """GET ``url``; non-2xx statuses are returned, not raised.

        Transport errors are retried with backoff. Any other httpx failure,
        such as a redirect loop or an undecodable body, fails at once.

        Raises:
            SyncError: kind NETWORK_UNAVAILABLE for any request failure.
        """
        attempt = 0
        while True:
            try:
                r = await self._client.get(url, params=params)
            except httpx.TransportError as e:
                attempt += 1
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))
                    continue
                logger.warning("GET %s failed after %d attempts: %s", url, attempt, e)
                raise SyncError(ErrorKind.NETWORK_UNAVAILABLE, f"Transport error: {e}") from e
            except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
                logger.warning("GET %s failed: %s", url, e)
                raise SyncError(ErrorKind.NETWORK_UNAVAILABLE, f"Request failed: {e}") from e
            return FetchResponse(status=r.status_code, content=r.content, headers=dict(r.headers))

    async def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET and decode JSON.

        Raises:
            SyncError: NETWORK_UNAVAILABLE on transport failure, HTTP_STATUS on
                a non-2xx status or an undecodable body.
        """
        response = await self.fetch(url, params=params)
        if not response.ok:
            raise SyncError(ErrorKind.HTTP_STATUS, f"GET {url}", status=response.status)
        try:
            return json.loads(response.content)
        except ValueError as e:
            raise SyncError(ErrorKind.HTTP_STATUS, f"Invalid JSON from {url}: {e}") from e

    async def download_to_file(self, url: str, path: Path) -> int:
        """Stream ``url`` into ``path``; returns the HTTP status.

        The file is only written for 2xx responses.

        Raises:
            SyncError: NETWORK_UNAVAILABLE on any request failure.
        """
        path = Path(path)
        try:
            async with self._client.stream("GET", url) as r:
                if not r.is_success:
                    return r.status_code
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "wb") as f:
                    async for chunk in r.aiter_bytes():
                        f.write(chunk)
                return r.status_code
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            raise SyncError(ErrorKind.NETWORK_UNAVAILABLE, f"Download of {url} failed: {e}") from e
