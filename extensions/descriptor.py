"""Per-extension package descriptor (package.json)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from extensions.errors import DescriptorError

DESCRIPTOR_FILE = "package.json"
DEFAULT_ENGINE = "coc"


@dataclass
class PackageDescriptor:
    """The parts of an extension's package.json the manager reads.

    Attributes:
        name: Package identifier, also the live directory name.
        version: Semantic version string.
        dependencies: Runtime dependencies, name to range.
        engines: Engine ranges, host engine key to range.
        engine: Key in ``engines`` naming the host application.
    """

    name: str | None = None
    version: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    engines: dict[str, str] = field(default_factory=dict)
    engine: str = DEFAULT_ENGINE

    @property
    def required_host_version(self) -> str | None:
        """Host compatibility range, None when unconstrained."""
        return self.engines.get(self.engine) or None

    @property
    def has_dependencies(self) -> bool:
        return bool(self.dependencies)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], engine: str = DEFAULT_ENGINE
    ) -> PackageDescriptor:
        """Create a descriptor from parsed package.json data.

        Raises:
            DescriptorError: If the data is not a mapping.
        """
        if not isinstance(data, dict):
            raise DescriptorError("package.json must be a JSON object")

        dependencies = data.get("dependencies") or {}
        engines = data.get("engines") or {}
        if not isinstance(dependencies, dict) or not isinstance(engines, dict):
            raise DescriptorError(
                f"Invalid package.json for {data.get('name')!r}: "
                "dependencies and engines must be objects"
            )

        return cls(
            name=data.get("name"),
            version=data.get("version"),
            dependencies=dependencies,
            engines=engines,
            engine=engine,
        )

    @classmethod
    def from_file(cls, path: Path, engine: str = DEFAULT_ENGINE) -> PackageDescriptor:
        """Load a descriptor from a package.json file.

        Args:
            path: Path to package.json, or to the directory holding it.
            engine: Key in ``engines`` naming the host application.

        Returns:
            Parsed PackageDescriptor.

        Raises:
            DescriptorError: If the file is missing or invalid.
        """
        path = Path(path)
        if path.is_dir():
            path = path / DESCRIPTOR_FILE

        if not path.exists():
            raise DescriptorError(f"Descriptor not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DescriptorError(f"Invalid JSON in {path}: {e}") from e

        return cls.from_dict(data, engine=engine)

    def __repr__(self) -> str:
        return f"PackageDescriptor(name={self.name!r}, version={self.version!r})"
