"""Manifest of installed extensions.

The manifest lives at ``<root>/package.json`` and maps each installed
extension to the constraint it was installed with::

    {
      "dependencies": {
        "coc-json": ">=1.2.0",
        "coc-tools": "https://github.com/owner/coc-tools"
      }
    }

Registry installs record a floor (``>=<version>``), URL installs record the
URL itself. Keys are always written sorted so the file diffs cleanly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path

from extensions.errors import ManifestCorruptError, ManifestError
from extensions.resolver import is_url


@dataclass(frozen=True)
class Manifest:
    """Installed extensions, name to constraint."""

    dependencies: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, str]]:
        """Convert to the on-disk shape with sorted keys."""
        return {"dependencies": {k: self.dependencies[k] for k in sorted(self.dependencies)}}

    def get(self, name: str) -> str | None:
        return self.dependencies.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.dependencies

    def __len__(self) -> int:
        return len(self.dependencies)


def constraint_for(ref: str, version: str | None) -> str:
    """The manifest value for an extension installed from ``ref``."""
    if is_url(ref):
        return ref
    return f">={version}"


def record(manifest: Manifest, name: str, ref: str, version: str | None) -> Manifest:
    """Return a manifest with ``name`` added or replaced.

    Args:
        manifest: Current manifest, left untouched.
        name: Extension name.
        ref: Reference the extension was installed from.
        version: Resolved version.

    Returns:
        New Manifest.
    """
    dependencies = dict(manifest.dependencies)
    dependencies[name] = constraint_for(ref, version)
    return replace(manifest, dependencies=dependencies)


def load_manifest(path: Path) -> Manifest:
    """Load the manifest from disk.

    A missing file is an empty manifest. A file that exists but cannot be
    parsed is an error: it must not be replaced with a partial one.

    Raises:
        ManifestCorruptError: If the file is not a JSON object.
    """
    path = Path(path)
    if not path.exists():
        return Manifest()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestCorruptError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestCorruptError(f"Manifest must be a JSON object: {path}")

    dependencies = data.get("dependencies") or {}
    if not isinstance(dependencies, dict):
        raise ManifestCorruptError(f"\"dependencies\" must be an object: {path}")

    for name, constraint in dependencies.items():
        if not isinstance(constraint, str):
            raise ManifestCorruptError(
                f"Constraint of {name} must be a string, got {constraint!r}: {path}"
            )

    return Manifest(dependencies=dict(dependencies))


def dump_manifest(manifest: Manifest) -> str:
    """Serialize the manifest, keys sorted, two-space indented."""
    return json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False)


def save_manifest(path: Path, manifest: Manifest) -> None:
    """Write the manifest to disk.

    Raises:
        ManifestError: If the file cannot be written.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_manifest(manifest), encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot write manifest {path}: {e}") from e
