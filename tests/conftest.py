"""Shared test fixtures for the extension manager test suite."""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from extensions.config import ManagerConfig, RegistryConfig
from extensions.errors import DownloadError, FetchError
from extensions.fetch import extract_archive
from extensions.manager import ExtensionManager

REGISTRY = "https://registry.test/"


def build_tarball(files: dict[str, Any], top: str = "package") -> bytes:
    """Build a gzipped tarball with every file under a single top directory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            if not isinstance(content, (str, bytes)):
                content = json.dumps(content)
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class StubFetcher:
    """In-memory Fetcher: URL to document, URL to tarball bytes."""

    def __init__(self) -> None:
        self.documents: dict[str, Any] = {}
        self.archives: dict[str, bytes] = {}
        self.fetched: list[str] = []
        self.downloaded: list[str] = []

    async def fetch(self, url: str) -> Any:
        self.fetched.append(url)
        if url not in self.documents:
            raise FetchError(f"{url} not found", status_code=404)
        return self.documents[url]

    async def download(self, url: str, dest: Path) -> None:
        self.downloaded.append(url)
        if url not in self.archives:
            raise DownloadError(f"Download of {url} failed with 404")
        tarball = Path(dest).parent / f"{Path(dest).name}.tgz"
        tarball.write_bytes(self.archives[url])
        try:
            extract_archive(tarball, Path(dest))
        finally:
            tarball.unlink()

    def publish(
        self,
        name: str,
        version: str,
        engines: dict[str, str] | None = None,
        dependencies: dict[str, str] | None = None,
        latest: bool = True,
    ) -> str:
        """Add a version to the registry document and serve its tarball."""
        tarball_url = f"{REGISTRY}{name}/-/{name}-{version}.tgz"
        package = {"name": name, "version": version}
        if engines is not None:
            package["engines"] = engines
        if dependencies:
            package["dependencies"] = dependencies

        doc = self.documents.setdefault(
            f"{REGISTRY}{name}", {"name": name, "dist-tags": {}, "versions": {}}
        )
        doc["versions"][version] = {**package, "dist": {"tarball": tarball_url}}
        if latest:
            doc["dist-tags"]["latest"] = version

        self.archives[tarball_url] = build_tarball(
            {"package.json": package, "index.js": "module.exports = {}\n"}
        )
        return tarball_url

    def publish_repo(
        self,
        uri: str,
        package: dict[str, Any],
        as_text: bool = False,
    ) -> str:
        """Serve a repository's raw package.json and master archive."""
        path = uri.rstrip("/").split("github.com", 1)[1]
        raw = f"https://raw.githubusercontent.com{path}/master/package.json"
        self.documents[raw] = json.dumps(package) if as_text else package

        tarball_url = f"{uri.rstrip('/')}/archive/master.tar.gz"
        repo = path.rsplit("/", 1)[-1]
        self.archives[tarball_url] = build_tarball(
            {"package.json": package, "lib/index.js": "exports.activate = () => {}\n"},
            top=f"{repo}-master",
        )
        return tarball_url


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def ext_root(tmp_path: Path) -> Path:
    root = tmp_path / "extensions"
    root.mkdir()
    return root


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    return tmp_path / "staging"


@pytest.fixture
def config(staging_dir: Path) -> ManagerConfig:
    config = ManagerConfig(registry=RegistryConfig(url=REGISTRY))
    config.extensions.staging_dir = str(staging_dir)
    return config


@pytest.fixture
def messages() -> list[Any]:
    return []


@pytest.fixture
def manager(
    ext_root: Path, fetcher: StubFetcher, config: ManagerConfig, messages: list[Any]
) -> ExtensionManager:
    return ExtensionManager(
        ext_root,
        host_version="0.0.50",
        fetcher=fetcher,
        config=config,
        on_message=messages.append,
    )


@pytest.fixture
def package_manager():
    """Patch the package manager subprocess; yields the mock and its process."""
    process = AsyncMock()
    process.communicate.return_value = (b"", b"")
    process.returncode = 0
    with patch(
        "extensions.installer.asyncio.create_subprocess_exec",
        new=AsyncMock(return_value=process),
    ) as mock_exec:
        yield mock_exec, process


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))
