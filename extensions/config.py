"""Configuration management for the extension manager.

Loads configuration from:
1. config.toml (defaults)
2. Environment variables (overrides)
3. .npmrc files (registry URL, only when not configured above)
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org/"


@dataclass
class ExtensionsConfig:
    """Extension tree configuration."""

    # Extension root (default: ~/.config/extmgr/extensions)
    root: str = ""
    package_manager: str = "npm"
    host_version: str = "0.0.0"
    engine: str = "coc"  # Key under "engines" naming the host
    staging_dir: str = ""  # Empty = system temp dir

    def root_path(self) -> Path:
        """Resolve the extension root directory."""
        if self.root:
            return Path(self.root).expanduser()
        return Path.home() / ".config" / "extmgr" / "extensions"


@dataclass
class RegistryConfig:
    """Package registry and source host configuration."""

    url: str = ""  # Empty = discover from .npmrc
    scope: str = "coc.nvim"
    trusted_host: str = "github.com"
    raw_host: str = "raw.githubusercontent.com"
    timeout: float = 60.0


@dataclass
class ManagerConfig:
    """Main configuration container."""

    extensions: ExtensionsConfig = field(default_factory=ExtensionsConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManagerConfig":
        """Create ManagerConfig from dictionary."""
        extensions_data = data.get("extensions", {})
        registry_data = data.get("registry", {})

        return cls(
            extensions=ExtensionsConfig(**extensions_data),
            registry=RegistryConfig(**registry_data),
            log_level=data.get("log_level", "INFO"),
        )

    @property
    def registry_url(self) -> str:
        """Registry base URL, always ending with a slash."""
        url = self.registry.url or discover_registry_url(self.registry.scope)
        return url if url.endswith("/") else url + "/"


def find_config_file() -> Path | None:
    """Find config.toml in current or parent directories.

    Returns:
        Path to config.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / "config.toml"
        if config_path.exists():
            return config_path

    return None


def read_npmrc(path: Path) -> dict[str, str]:
    """Parse an .npmrc file into a flat key/value mapping."""
    values: dict[str, str] = {}
    if not path.is_file():
        return values

    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith(("#", ";")) or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"')
    return values


def discover_registry_url(scope: str = "coc.nvim", cwd: Path | None = None) -> str:
    """Find the registry URL the way npm does for a scope.

    The project .npmrc wins over the user one. A scoped registry
    (``<scope>:registry``) wins over the plain ``registry`` key.

    Args:
        scope: Registry scope to look up.
        cwd: Directory holding the project .npmrc (default: cwd).

    Returns:
        Registry URL, defaulting to the public npm registry.
    """
    values = read_npmrc(Path.home() / ".npmrc")
    values.update(read_npmrc((cwd or Path.cwd()) / ".npmrc"))

    return (
        values.get(f"{scope}:registry")
        or values.get("registry")
        or DEFAULT_REGISTRY_URL
    )


def load_config(config_path: Path | str | None = None) -> ManagerConfig:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to config.toml

    Returns:
        ManagerConfig object with merged settings.
    """
    # Start with defaults
    config_data: dict[str, Any] = {}

    # Load from file if available
    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                config_data = tomllib.load(f)

    # Apply environment variable overrides
    env_overrides = {
        "extensions": {
            "root": os.getenv("EXTMGR_ROOT"),
            "package_manager": os.getenv("EXTMGR_PACKAGE_MANAGER"),
            "host_version": os.getenv("EXTMGR_HOST_VERSION"),
            "staging_dir": os.getenv("EXTMGR_STAGING_DIR"),
        },
        "registry": {
            "url": os.getenv("EXTMGR_REGISTRY"),
            "timeout": _float_or_none(os.getenv("EXTMGR_TIMEOUT")),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    log_level = os.getenv("LOG_LEVEL")
    if log_level is not None:
        config_data["log_level"] = log_level

    return ManagerConfig.from_dict(config_data)


def _float_or_none(value: str | None) -> float | None:
    """Convert string to float, or return None."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: ManagerConfig | None = None


def get_config() -> ManagerConfig:
    """Get the global configuration instance.

    Returns:
        ManagerConfig object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> ManagerConfig:
    """Force reload of configuration.

    Args:
        config_path: Optional explicit path to config.toml

    Returns:
        Fresh ManagerConfig object.
    """
    global _config
    _config = load_config(config_path)
    return _config
