"""End-to-end tests for installing and updating extensions."""

from __future__ import annotations

import asyncio
import json
import random
from pathlib import Path
from typing import Any

import pytest

from conftest import StubFetcher, build_tarball, read_json
from extensions.config import ManagerConfig
from extensions.errors import (
    DownloadError,
    ExtensionNotInstalledError,
    IncompatibleHostError,
    ManifestCorruptError,
    ResolutionError,
)
from extensions.manager import ExtensionManager


def install(manager: ExtensionManager, ref: str) -> str:
    return asyncio.run(manager.install("npm", ref))


def update(manager: ExtensionManager, name: str, uri: str | None = None) -> bool:
    return asyncio.run(manager.update("npm", name, uri))


def snapshot(root: Path) -> dict[str, Any]:
    """Every path under root with its content, for no-write assertions."""
    state: dict[str, Any] = {}
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or path.is_dir():
            state[str(path)] = None
        else:
            state[str(path)] = path.read_bytes()
    return state


class TestInstall:
    def test_registry_install_end_to_end(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})

        assert install(manager, "sample@1.0.0") == "sample"

        live = ext_root / "node_modules" / "sample"
        assert live.is_dir()
        assert read_json(live / "package.json")["version"] == "1.0.0"
        assert read_json(ext_root / "package.json") == {"dependencies": {"sample": ">=1.0.0"}}

    def test_notifies_host(
        self, ext_root: Path, fetcher: StubFetcher, config: ManagerConfig, package_manager
    ) -> None:
        notices: list[str] = []
        manager = ExtensionManager(
            ext_root, "0.0.50", fetcher=fetcher, config=config, notify=notices.append
        )
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})

        install(manager, "sample")

        assert notices == ["Installed extension: sample"]

    def test_creates_missing_root(
        self, tmp_path: Path, fetcher: StubFetcher, config: ManagerConfig, package_manager
    ) -> None:
        root = tmp_path / "new-root"
        manager = ExtensionManager(root, "0.0.50", fetcher=fetcher, config=config)
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})

        install(manager, "sample")

        assert (root / "node_modules" / "sample" / "package.json").exists()

    def test_source_repository_install(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish_repo(
            "https://github.com/x/y", {"name": "x-y-package-name", "version": "0.2.0"}
        )

        assert install(manager, "https://github.com/x/y") == "x-y-package-name"

        assert read_json(ext_root / "package.json") == {
            "dependencies": {"x-y-package-name": "https://github.com/x/y"}
        }

    def test_manifest_sorted_across_installs(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        for name in ["zeta", "alpha", "mid"]:
            fetcher.publish(name, "1.0.0", engines={"coc": ">=0.0.1"})
            install(manager, name)

        text = (ext_root / "package.json").read_text(encoding="utf-8")
        assert list(json.loads(text)["dependencies"]) == ["alpha", "mid", "zeta"]

    def test_incompatible_host_touches_nothing(
        self,
        manager: ExtensionManager,
        fetcher: StubFetcher,
        ext_root: Path,
        staging_dir: Path,
        package_manager,
    ) -> None:
        fetcher.publish("future", "2.0.0", engines={"coc": "^0.0.80"})
        before = snapshot(ext_root)

        with pytest.raises(IncompatibleHostError, match="requires host >=0.0.80"):
            install(manager, "future")

        assert snapshot(ext_root) == before
        assert fetcher.downloaded == []
        assert not staging_dir.exists()
        assert not (ext_root / "package.json").exists()

    def test_failed_install_on_fresh_root_writes_nothing(
        self, tmp_path: Path, fetcher: StubFetcher, config: ManagerConfig
    ) -> None:
        root = tmp_path / "fresh-root"
        manager = ExtensionManager(root, "0.0.50", fetcher=fetcher, config=config)

        with pytest.raises(ResolutionError):
            install(manager, "missing")

        assert not root.exists()

    def test_unsupported_host_never_downloads(
        self, manager: ExtensionManager, fetcher: StubFetcher
    ) -> None:
        with pytest.raises(ResolutionError, match="is not supported"):
            install(manager, "https://gitlab.com/x/y")

        assert fetcher.fetched == []
        assert fetcher.downloaded == []

    def test_install_many_isolates_failures(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        for name in ["one", "two", "three"]:
            fetcher.publish(name, "1.0.0", engines={"coc": ">=0.0.1"})
        (ext_root / "node_modules").mkdir()
        (ext_root / "node_modules" / "two").write_text("blocker")

        results = asyncio.run(manager.install_many("npm", ["one", "two", "three", "missing"]))

        assert results["one"] == "one"
        assert results["two"] == "two"
        assert results["three"] == "three"
        assert isinstance(results["missing"], ResolutionError)
        assert (ext_root / "node_modules" / "one").is_dir()
        assert (ext_root / "node_modules" / "three").is_dir()
        assert (ext_root / "node_modules" / "two").read_text() == "blocker"
        assert set(read_json(ext_root / "package.json")["dependencies"]) == {"one", "three"}

    def test_install_many_survives_truncated_download(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish("good", "1.0.0", engines={"coc": ">=0.0.1"})
        url = fetcher.publish("cut", "1.0.0", engines={"coc": ">=0.0.1"})
        tarball = build_tarball(
            {"package.json": {"name": "cut"}, "blob.bin": random.Random(1).randbytes(200_000)}
        )
        fetcher.archives[url] = tarball[: len(tarball) // 2]

        results = asyncio.run(manager.install_many("npm", ["good", "cut"]))

        assert results["good"] == "good"
        assert isinstance(results["cut"], DownloadError)
        assert not (ext_root / "node_modules" / "cut").exists()


class TestUpdate:
    @pytest.fixture
    def installed(
        self, manager: ExtensionManager, fetcher: StubFetcher, package_manager
    ) -> ExtensionManager:
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})
        install(manager, "sample")
        return manager

    def test_newer_version_installed(
        self, installed: ExtensionManager, fetcher: StubFetcher, ext_root: Path
    ) -> None:
        fetcher.publish("sample", "1.1.0", engines={"coc": ">=0.0.1"})

        assert update(installed, "sample") is True

        assert read_json(ext_root / "node_modules" / "sample" / "package.json")["version"] == "1.1.0"
        assert read_json(ext_root / "package.json") == {"dependencies": {"sample": ">=1.1.0"}}

    def test_idempotent_when_up_to_date(
        self, installed: ExtensionManager, fetcher: StubFetcher, staging_dir: Path
    ) -> None:
        staged_before = set(staging_dir.iterdir())
        downloads_before = list(fetcher.downloaded)

        assert update(installed, "sample") is False
        assert update(installed, "sample") is False

        assert set(staging_dir.iterdir()) == staged_before
        assert fetcher.downloaded == downloads_before

    def test_prerelease_replaced_by_final_release(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish("sample", "1.0.0-1", engines={"coc": ">=0.0.1"})
        install(manager, "sample")
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})

        assert update(manager, "sample") is True

        assert read_json(ext_root / "node_modules" / "sample" / "package.json")["version"] == "1.0.0"

    def test_installed_newer_than_registry(
        self, installed: ExtensionManager, fetcher: StubFetcher, ext_root: Path
    ) -> None:
        descriptor = ext_root / "node_modules" / "sample" / "package.json"
        descriptor.write_text('{"name": "sample", "version": "2.0.0"}')

        assert update(installed, "sample") is False

    def test_symlink_is_skipped(
        self,
        manager: ExtensionManager,
        fetcher: StubFetcher,
        ext_root: Path,
        tmp_path: Path,
    ) -> None:
        fetcher.publish("linked", "9.0.0", engines={"coc": ">=0.0.1"})
        checkout = tmp_path / "dev" / "linked"
        checkout.mkdir(parents=True)
        (checkout / "package.json").write_text('{"name": "linked", "version": "0.0.1"}')
        manager.installer.ensure_root()
        (ext_root / "node_modules" / "linked").symlink_to(checkout, target_is_directory=True)
        before = snapshot(ext_root)

        assert update(manager, "linked") is False

        assert snapshot(ext_root) == before
        assert fetcher.fetched == []
        assert manager.is_linked("linked")

    def test_not_installed(self, manager: ExtensionManager) -> None:
        with pytest.raises(ExtensionNotInstalledError):
            update(manager, "ghost")

    def test_update_from_uri_records_uri(
        self, installed: ExtensionManager, fetcher: StubFetcher, ext_root: Path
    ) -> None:
        fetcher.publish_repo("https://github.com/x/sample", {"name": "sample", "version": "1.5.0"})

        assert update(installed, "sample", "https://github.com/x/sample") is True

        assert read_json(ext_root / "package.json") == {
            "dependencies": {"sample": "https://github.com/x/sample"}
        }

    def test_missing_descriptor_always_updates(
        self, installed: ExtensionManager, ext_root: Path
    ) -> None:
        (ext_root / "node_modules" / "sample" / "package.json").unlink()

        assert update(installed, "sample") is True

    def test_incompatible_update_rejected(
        self, installed: ExtensionManager, fetcher: StubFetcher, ext_root: Path
    ) -> None:
        fetcher.publish("sample", "2.0.0", engines={"coc": ">=1.0.0"})

        with pytest.raises(IncompatibleHostError):
            update(installed, "sample")

        assert read_json(ext_root / "node_modules" / "sample" / "package.json")["version"] == "1.0.0"

    def test_update_all(
        self, installed: ExtensionManager, fetcher: StubFetcher, ext_root: Path
    ) -> None:
        fetcher.publish("other", "1.0.0", engines={"coc": ">=0.0.1"})
        install(installed, "other")
        fetcher.publish("sample", "1.2.0", engines={"coc": ">=0.0.1"})
        manifest = json.loads((ext_root / "package.json").read_text())
        manifest["dependencies"]["gone"] = ">=1.0.0"
        (ext_root / "package.json").write_text(json.dumps(manifest))

        results = asyncio.run(installed.update_all("npm"))

        assert results["sample"] is True
        assert results["other"] is False
        assert isinstance(results["gone"], ExtensionNotInstalledError)

    def test_update_all_rejects_non_string_constraint(
        self, manager: ExtensionManager, ext_root: Path
    ) -> None:
        (ext_root / "package.json").write_text('{"dependencies": {"x": 1}}')

        with pytest.raises(ManifestCorruptError, match="must be a string"):
            asyncio.run(manager.update_all("npm"))


class TestConcurrency:
    def test_same_name_installs_are_serialized(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})
        active = 0
        peak = 0
        original = manager.installer.stage

        async def tracking_stage(*args: Any, **kwargs: Any) -> bool:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            try:
                return await original(*args, **kwargs)
            finally:
                active -= 1

        manager.installer.stage = tracking_stage

        async def run() -> list[str]:
            return await asyncio.gather(*(manager.install("npm", "sample") for _ in range(3)))

        assert asyncio.run(run()) == ["sample", "sample", "sample"]
        assert peak == 1
        assert read_json(ext_root / "node_modules" / "sample" / "package.json")["version"] == "1.0.0"


class TestInstalledExtensions:
    def test_lists_manifest_entries(
        self, manager: ExtensionManager, fetcher: StubFetcher, ext_root: Path, package_manager
    ) -> None:
        fetcher.publish("sample", "1.0.0", engines={"coc": ">=0.0.1"})
        install(manager, "sample")
        manifest = json.loads((ext_root / "package.json").read_text())
        manifest["dependencies"]["absent"] = ">=1.0.0"
        (ext_root / "package.json").write_text(json.dumps(manifest))

        installed = {d.name: d for d in manager.installed_extensions()}

        assert installed["sample"].version == "1.0.0"
        assert installed["sample"].required_host_version == ">=0.0.1"
        assert installed["absent"].version is None
