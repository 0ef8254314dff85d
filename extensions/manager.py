"""Install and update extensions.

``install(ref)``: resolve -> compatibility gate -> staged install.
``update(name)``: read installed version -> resolve -> skip if up to date ->
compatibility gate -> staged install.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from extensions.compat import (
    check_compatibility,
    is_newer_or_equal,
    relax_range,
    satisfies,
)
from extensions.config import ManagerConfig
from extensions.descriptor import PackageDescriptor
from extensions.errors import (
    DescriptorError,
    ExtensionError,
    ExtensionNotInstalledError,
)
from extensions.fetch import Fetcher, HttpFetcher
from extensions.installer import MessageCallback, StagedInstaller
from extensions.manifest import load_manifest
from extensions.resolver import DistributionInfo, ReferenceResolver, is_url

logger = logging.getLogger(__name__)


def _log_message(message: object) -> None:
    logger.info("%s", message)


class ExtensionManager:
    """Manage the extensions installed under one root.

    Example:
        >>> manager = ExtensionManager(Path("~/.config/extmgr/extensions"), "0.0.80")
        >>> await manager.install("npm", "coc-json")
        'coc-json'
        >>> await manager.update("npm", "coc-json")
        False
    """

    def __init__(
        self,
        root: Path | None = None,
        host_version: str | None = None,
        fetcher: Fetcher | None = None,
        config: ManagerConfig | None = None,
        notify: Callable[[str], None] | None = None,
        on_message: MessageCallback | None = None,
    ):
        """Initialize the manager.

        Args:
            root: Extension root (default: from config).
            host_version: Running host version (default: from config).
            fetcher: Network access (default: HttpFetcher).
            config: Configuration (default: a fresh ManagerConfig).
            notify: User-facing notifications for finished installs.
            on_message: Progress callback for staged installs (default: log).
        """
        self.config = config or ManagerConfig()
        ext_config = self.config.extensions

        self.root = Path(root) if root else ext_config.root_path()
        self.host_version = host_version or ext_config.host_version
        self.fetcher = fetcher or HttpFetcher(timeout=self.config.registry.timeout)
        self.notify = notify
        self.on_message = on_message or _log_message
        self.engine = ext_config.engine

        self.resolver = ReferenceResolver(
            self.fetcher,
            self.config.registry_url,
            trusted_host=self.config.registry.trusted_host,
            raw_host=self.config.registry.raw_host,
            engine=self.engine,
        )
        self.installer = StagedInstaller(
            self.root,
            self.fetcher,
            staging_root=Path(ext_config.staging_dir) if ext_config.staging_dir else None,
            trusted_host=self.config.registry.trusted_host,
            engine=self.engine,
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def _notify(self, message: str) -> None:
        if self.notify:
            self.notify(message)

    def _gate(self, info: DistributionInfo) -> None:
        check_compatibility(
            info.required_host_version,
            self.host_version,
            name=info.name,
            version=info.version,
        )

    async def install(self, package_manager: str, ref: str) -> str:
        """Install an extension from a reference.

        Args:
            package_manager: Path to the package manager executable.
            ref: ``name``, ``name@version`` or a source repository URL.

        Returns:
            The installed extension's name.

        Raises:
            ResolutionError: If the reference cannot be resolved.
            IncompatibleHostError: If the host is too old for the extension.
            InstallError: If downloading or promoting fails.
        """
        logger.info("Using package manager from: %s", package_manager)
        logger.info("Loading info of %s.", ref)

        info = await self.resolver.resolve(ref)
        name = info.name or ref
        async with self._lock(name):
            self._gate(info)
            self.installer.ensure_root()
            if not await self.installer.stage(package_manager, ref, info, self.on_message):
                return name

        self._notify(f"Installed extension: {name}")
        logger.info("Installed extension: %s", name)
        return name

    async def update(
        self, package_manager: str, name: str, uri: str | None = None
    ) -> bool:
        """Update an installed extension if a newer version exists.

        Extensions linked into the tree (symlinks) are development checkouts
        and are never touched.

        Args:
            package_manager: Path to the package manager executable.
            name: Installed extension name.
            uri: Source repository URL to update from instead of the registry.

        Returns:
            True if a new version was installed.

        Raises:
            ExtensionNotInstalledError: If the extension is not installed.
            ResolutionError: If the reference cannot be resolved.
            IncompatibleHostError: If the host is too old for the new version.
            InstallError: If downloading or promoting fails.
        """
        folder = self.installer.target_dir(name)

        async with self._lock(name):
            if folder.is_symlink():
                logger.info("skipped update of %s", name)
                return False
            if not folder.exists():
                raise ExtensionNotInstalledError(f"Extension {name} is not installed")

            installed = self._installed_descriptor(folder) if folder.is_dir() else None
            version = installed.version if installed else None

            ref = uri or name
            logger.info("Loading info of %s.", ref)
            info = await self.resolver.resolve(ref)

            if version and info.version and is_newer_or_equal(version, info.version):
                logger.info("Extension %s is up to date.", name)
                self._warn_if_stale(installed)
                return False

            self._gate(info)
            self.installer.ensure_root()
            if not await self.installer.stage(package_manager, ref, info, self.on_message):
                return False

        self._notify(f"Updated extension: {name} to {info.version}")
        logger.info("Updated extension: %s", name)
        return True

    def _installed_descriptor(self, folder: Path) -> PackageDescriptor | None:
        try:
            return PackageDescriptor.from_file(folder, engine=self.engine)
        except DescriptorError as e:
            logger.debug("No usable descriptor in %s: %s", folder, e)
            return None

    def _warn_if_stale(self, installed: PackageDescriptor | None) -> None:
        """Log when an up to date extension no longer accepts this host."""
        required = installed.required_host_version if installed else None
        if not required:
            return
        try:
            ok = satisfies(self.host_version, relax_range(required))
        except ValueError:
            return
        if not ok:
            logger.warning(
                "Installed %s %s requires host %s, running %s",
                installed.name,
                installed.version,
                required,
                self.host_version,
            )

    async def install_many(
        self, package_manager: str, refs: list[str]
    ) -> dict[str, str | ExtensionError]:
        """Install several extensions concurrently.

        Returns:
            Mapping of reference to installed name, or to the error it raised.
        """
        results = await asyncio.gather(
            *(self.install(package_manager, ref) for ref in refs),
            return_exceptions=True,
        )
        outcome: dict[str, str | ExtensionError] = {}
        for ref, result in zip(refs, results):
            if isinstance(result, BaseException) and not isinstance(result, ExtensionError):
                raise result
            outcome[ref] = result
        return outcome

    async def update_all(self, package_manager: str) -> dict[str, bool | ExtensionError]:
        """Update every extension recorded in the manifest.

        URL constraints are updated from their source repository.

        Returns:
            Mapping of extension name to update result, or to the error it raised.
        """
        manifest = load_manifest(self.installer.manifest_path)

        outcome: dict[str, bool | ExtensionError] = {}
        for name, constraint in manifest.to_dict()["dependencies"].items():
            uri = constraint if is_url(constraint) else None
            try:
                outcome[name] = await self.update(package_manager, name, uri)
            except ExtensionError as e:
                logger.warning("Failed to update %s: %s", name, e)
                outcome[name] = e
        return outcome

    def installed_extensions(self) -> list[PackageDescriptor]:
        """Descriptors of every extension recorded in the manifest."""
        manifest = load_manifest(self.installer.manifest_path)
        installed: list[PackageDescriptor] = []
        for name in manifest.to_dict()["dependencies"]:
            folder = self.installer.target_dir(name)
            descriptor = self._installed_descriptor(folder) if folder.is_dir() else None
            installed.append(descriptor or PackageDescriptor(name=name, engine=self.engine))
        return installed

    def is_linked(self, name: str) -> bool:
        """Whether an extension is a symlinked development checkout."""
        return self.installer.target_dir(name).is_symlink()
