"""Errors raised by the extension manager.

Resolution and compatibility errors are raised before anything touches the
extension tree, so they are safe to show to the user as is.
"""

from __future__ import annotations


class ExtensionError(Exception):
    """Base class for extension manager errors."""

    pass


class ResolutionError(ExtensionError):
    """Raised when a reference cannot be mapped to a valid extension."""

    pass


class DescriptorError(ResolutionError):
    """Raised when a package.json descriptor is missing or invalid."""

    pass


class IncompatibleHostError(ExtensionError):
    """Raised when the host version does not satisfy an extension's range."""

    pass


class FetchError(ExtensionError):
    """Raised when a remote document cannot be fetched."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InstallError(ExtensionError):
    """Raised when a staged install fails."""

    pass


class DownloadError(InstallError):
    """Raised when an archive cannot be downloaded or extracted."""

    pass


class FilesystemError(InstallError):
    """Raised when removing or promoting an extension directory fails."""

    pass


class ExtensionNotInstalledError(FilesystemError):
    """Raised when updating an extension that has no live directory."""

    pass


class PackageManagerError(InstallError):
    """Raised when the package manager executable cannot be started."""

    pass


class ManifestError(ExtensionError):
    """Raised when the extension manifest cannot be read or written."""

    pass


class ManifestCorruptError(ManifestError):
    """Raised when the existing manifest is not valid JSON."""

    pass


class DependencyInstallWarning(UserWarning):
    """Reported when the package manager exits non-zero.

    Not raised: the install continues and this is handed to the progress
    callback instead.
    """

    def __init__(self, package_manager: str, exit_code: int, stderr: str = ""):
        self.package_manager = package_manager
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(str(self))

    def __str__(self) -> str:
        message = f"{self.package_manager} install exited with {self.exit_code}"
        if self.stderr:
            message += f", messages:\n{self.stderr}"
        return message
