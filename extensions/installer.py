"""Staged installer for extensions.

Downloads an extension into a fresh temporary directory, installs its
dependencies there, records it in the manifest, and only then moves the
staged directory over the live one.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Union

from extensions.descriptor import DEFAULT_ENGINE, PackageDescriptor
from extensions.errors import (
    DependencyInstallWarning,
    FilesystemError,
    PackageManagerError,
)
from extensions.fetch import Fetcher
from extensions.manifest import load_manifest, record, save_manifest
from extensions.resolver import DEFAULT_TRUSTED_HOST, DistributionInfo, host_matches

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Union[str, DependencyInstallWarning]], None]

MANIFEST_FILE = "package.json"
MODULES_DIR = "node_modules"

# Registry tarballs are final builds: runtime deps only, no scripts.
PRODUCTION_INSTALL_ARGS = ["install", "--ignore-scripts", "--no-lockfile", "--production"]
# Source archives may need scripts and dev dependencies to build.
SOURCE_INSTALL_ARGS = ["install"]


class StagedInstaller:
    """Install resolved extensions into an extension tree.

    The tree looks like:
    <root>/
    ├── package.json          # manifest
    └── node_modules/
        └── <extension-name>/
            ├── package.json  # descriptor
            └── ...

    Example:
        >>> installer = StagedInstaller(Path("~/.config/extmgr/extensions"), HttpFetcher())
        >>> await installer.stage("npm", "coc-json", info, print)
    """

    def __init__(
        self,
        root: Path,
        fetcher: Fetcher,
        staging_root: Path | None = None,
        trusted_host: str = DEFAULT_TRUSTED_HOST,
        engine: str = DEFAULT_ENGINE,
    ):
        """Initialize the installer.

        Args:
            root: Extension root directory.
            fetcher: Network access for archive downloads.
            staging_root: Where staging directories are created (default: system temp).
            trusted_host: Source host whose archives get a full dependency install.
            engine: Key under ``engines`` naming the host application.
        """
        self.root = Path(root)
        self.fetcher = fetcher
        self.staging_root = Path(staging_root) if staging_root else None
        self.trusted_host = trusted_host
        self.engine = engine

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def modules_dir(self) -> Path:
        return self.root / MODULES_DIR

    def target_dir(self, name: str) -> Path:
        """Live directory of an extension."""
        return self.modules_dir / name

    def ensure_root(self) -> None:
        """Create the extension tree directories.

        The manifest is left alone; the first successful stage writes it.
        """
        (self.modules_dir / ".cache").mkdir(parents=True, exist_ok=True)

    def create_staging_dir(self, name: str) -> Path:
        """Create a fresh, uniquely named staging directory."""
        if self.staging_root:
            self.staging_root.mkdir(parents=True, exist_ok=True)
        prefix = name.replace("/", "-").lstrip("@") + "-"
        return Path(
            tempfile.mkdtemp(
                prefix=prefix,
                dir=str(self.staging_root) if self.staging_root else None,
            )
        )

    def install_args(self, info: DistributionInfo) -> list[str]:
        """Package manager arguments for an extension's dependencies."""
        if host_matches(info.tarball_url, self.trusted_host):
            return list(SOURCE_INSTALL_ARGS)
        return list(PRODUCTION_INSTALL_ARGS)

    async def stage(
        self,
        package_manager: str,
        ref: str,
        info: DistributionInfo,
        on_message: MessageCallback,
    ) -> bool:
        """Download, prepare and promote one extension.

        Args:
            package_manager: Path to the package manager executable.
            ref: Reference the extension was requested with.
            info: Resolved distribution metadata.
            on_message: Progress callback.

        Returns:
            True if the extension was promoted, False if it was skipped.

        Raises:
            DownloadError: If the archive cannot be fetched or extracted.
            DescriptorError: If the staged package.json is missing or invalid.
            ManifestError: If the manifest cannot be read or written.
            FilesystemError: If the live directory cannot be replaced.
            PackageManagerError: If the package manager cannot be started.
        """
        name = info.name
        if not name:
            raise FilesystemError(f"Cannot install {ref}: package has no name")

        staging = self.create_staging_dir(name)
        folder = self.target_dir(name)
        if os.path.lexists(folder) and not folder.is_dir():
            shutil.rmtree(staging, ignore_errors=True)
            on_message(f"{folder} is not directory, skipped install of {name}")
            return False

        try:
            on_message(f"Downloading from {info.tarball_url}")
            await self.fetcher.download(info.tarball_url, staging)

            descriptor = PackageDescriptor.from_file(staging, engine=self.engine)
            if descriptor.has_dependencies:
                on_message("Installing dependencies.")
                await self.install_dependencies(
                    package_manager, staging, self.install_args(info), on_message
                )

            manifest = record(load_manifest(self.manifest_path), name, ref, info.version)
            save_manifest(self.manifest_path, manifest)
        except BaseException:
            # the live directory is untouched until promote
            shutil.rmtree(staging, ignore_errors=True)
            raise

        on_message("Moving to new folder.")
        self.promote(staging, folder)
        return True

    async def install_dependencies(
        self,
        package_manager: str,
        cwd: Path,
        args: list[str],
        on_message: MessageCallback,
    ) -> int:
        """Run the package manager in a staging directory.

        A non-zero exit is reported through ``on_message`` as a
        DependencyInstallWarning and otherwise ignored.

        Returns:
            The package manager's exit code.
        """
        logger.debug("Running %s %s in %s", package_manager, " ".join(args), cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                package_manager,
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PackageManagerError(f"Cannot run {package_manager}: {e}") from e

        _, stderr = await process.communicate()
        code = process.returncode or 0
        if code:
            warning = DependencyInstallWarning(
                package_manager,
                code,
                stderr.decode("utf-8", errors="replace") if stderr else "",
            )
            logger.warning("%s", warning)
            on_message(warning)
        return code

    def promote(self, staging: Path, folder: Path) -> None:
        """Replace the live directory with the staged one.

        Raises:
            FilesystemError: If removing or moving fails.
        """
        try:
            if folder.is_symlink():
                folder.unlink()
            elif folder.exists():
                shutil.rmtree(folder)

            folder.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(staging), str(folder))
        except OSError as e:
            raise FilesystemError(f"Cannot move {staging} to {folder}: {e}") from e
