"""Extension manager.

Installs and updates host extensions published to an npm-style registry or
hosted in source repositories. Each install is staged in a temporary
directory and moved into the extension tree only when complete, and the
manifest of installed extensions is rewritten with sorted keys after every
successful install.

Extensions are stored in ~/.config/extmgr/extensions/node_modules/ by default.
"""

from extensions.compat import check_compatibility, relax_range, satisfies
from extensions.descriptor import PackageDescriptor
from extensions.errors import (
    DependencyInstallWarning,
    DescriptorError,
    DownloadError,
    ExtensionError,
    ExtensionNotInstalledError,
    FetchError,
    FilesystemError,
    IncompatibleHostError,
    InstallError,
    ManifestCorruptError,
    ManifestError,
    PackageManagerError,
    ResolutionError,
)
from extensions.fetch import Fetcher, HttpFetcher
from extensions.installer import StagedInstaller
from extensions.manager import ExtensionManager
from extensions.manifest import Manifest, load_manifest, record, save_manifest
from extensions.resolver import DistributionInfo, ReferenceResolver

__all__ = [
    "DependencyInstallWarning",
    "DescriptorError",
    "DistributionInfo",
    "DownloadError",
    "ExtensionError",
    "ExtensionManager",
    "ExtensionNotInstalledError",
    "FetchError",
    "Fetcher",
    "FilesystemError",
    "HttpFetcher",
    "IncompatibleHostError",
    "InstallError",
    "Manifest",
    "ManifestCorruptError",
    "ManifestError",
    "PackageDescriptor",
    "PackageManagerError",
    "ReferenceResolver",
    "ResolutionError",
    "StagedInstaller",
    "check_compatibility",
    "load_manifest",
    "record",
    "relax_range",
    "satisfies",
    "save_manifest",
]
