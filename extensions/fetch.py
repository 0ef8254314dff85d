"""HTTP access for registry documents and distribution archives."""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import Any, Protocol

import httpx

from extensions.errors import DownloadError, FetchError

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    """What the resolver and installer need from the network."""

    async def fetch(self, url: str) -> Any:
        """Fetch a document: parsed JSON, or text when it is not JSON."""
        ...

    async def download(self, url: str, dest: Path) -> None:
        """Download an archive and extract its contents into ``dest``."""
        ...


class HttpFetcher:
    """Fetcher backed by httpx.

    Example:
        >>> fetcher = HttpFetcher(timeout=30.0)
        >>> doc = await fetcher.fetch("https://registry.npmjs.org/coc-json")
        >>> await fetcher.download(doc["versions"]["1.0.0"]["dist"]["tarball"], dest)
    """

    def __init__(
        self,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Per-request timeout in seconds.
            headers: Extra headers sent with every request.
            transport: Custom httpx transport (proxies, tests).
        """
        self.timeout = timeout
        self.headers = headers or {}
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=self.headers,
            transport=self.transport,
        )

    async def fetch(self, url: str) -> Any:
        """Fetch a URL, decoding JSON bodies.

        Raises:
            FetchError: On HTTP status or connection errors.
        """
        logger.debug("Fetching %s", url)
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise FetchError(f"{url} not found", status_code=status) from e
            raise FetchError(f"{url} returned {status}", status_code=status) from e
        except httpx.RequestError as e:
            raise FetchError(f"Connection error for {url}: {e}") from e

        try:
            return response.json()
        except ValueError:
            return response.text

    async def download(self, url: str, dest: Path) -> None:
        """Download a gzipped tarball and extract it into ``dest``.

        Raises:
            DownloadError: If the download or the extraction fails.
        """
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory() as tmp_dir:
            tarball_path = Path(tmp_dir) / "package.tar.gz"

            try:
                async with self._client() as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        with open(tarball_path, "wb") as f:
                            async for chunk in response.aiter_bytes():
                                f.write(chunk)
            except httpx.HTTPStatusError as e:
                raise DownloadError(
                    f"Download of {url} failed with {e.response.status_code}"
                ) from e
            except httpx.RequestError as e:
                raise DownloadError(f"Download of {url} failed: {e}") from e

            extract_archive(tarball_path, dest)


def extract_archive(tarball_path: Path, dest: Path) -> None:
    """Extract a tarball into ``dest``, dropping a single top-level directory.

    Registry tarballs wrap everything in ``package/``, source archives in
    ``<repo>-<branch>/``; the extension files must end up directly in dest.

    Raises:
        DownloadError: If the archive cannot be read.
    """
    with tempfile.TemporaryDirectory() as tmp_dir:
        tmp_path = Path(tmp_dir)

        try:
            with tarfile.open(tarball_path, "r:*") as tar:
                tar.extractall(tmp_path, filter="data")
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            raise DownloadError(f"Cannot extract {tarball_path.name}: {e}") from e

        extracted = list(tmp_path.iterdir())
        if len(extracted) == 1 and extracted[0].is_dir():
            ext_root = extracted[0]
        else:
            ext_root = tmp_path

        for item in ext_root.iterdir():
            shutil.move(str(item), str(dest / item.name))
