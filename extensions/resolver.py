"""Resolve extension references to distribution metadata.

A reference is one of:
- ``name`` or ``name@version``, looked up in the package registry
- a source repository URL on the trusted host, read from its default branch
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from extensions.descriptor import DEFAULT_ENGINE
from extensions.errors import FetchError, ResolutionError
from extensions.fetch import Fetcher

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?:", re.IGNORECASE)

DEFAULT_TRUSTED_HOST = "github.com"
DEFAULT_RAW_HOST = "raw.githubusercontent.com"
DEFAULT_BRANCH = "master"


def is_url(ref: str) -> bool:
    """Whether a reference points at a source repository rather than a name."""
    return bool(_URL_RE.match(ref))


def split_ref(ref: str) -> tuple[str, str | None]:
    """Split ``name@version`` into its parts.

    The leading ``@`` of a scoped name (``@scope/pkg``) is part of the name.
    """
    index = ref.find("@", 1)
    if index == -1:
        return ref, None
    return ref[:index], ref[index + 1 :] or None


def host_matches(url: str, host: str) -> bool:
    """Whether a URL is served by ``host`` (or its ``www.`` alias)."""
    hostname = (urlsplit(url).hostname or "").lower()
    return hostname in (host, f"www.{host}")


@dataclass(frozen=True)
class DistributionInfo:
    """Resolved metadata for one extension version."""

    tarball_url: str
    name: str | None = None
    version: str | None = None
    required_host_version: str | None = None


class ReferenceResolver:
    """Turn references into DistributionInfo.

    Example:
        >>> resolver = ReferenceResolver(HttpFetcher(), "https://registry.npmjs.org/")
        >>> info = await resolver.resolve("coc-json@1.2.0")
        >>> info.tarball_url
        'https://registry.npmjs.org/coc-json/-/coc-json-1.2.0.tgz'
    """

    def __init__(
        self,
        fetcher: Fetcher,
        registry_url: str,
        trusted_host: str = DEFAULT_TRUSTED_HOST,
        raw_host: str = DEFAULT_RAW_HOST,
        engine: str = DEFAULT_ENGINE,
    ):
        """Initialize the resolver.

        Args:
            fetcher: Network access for registry and raw descriptor documents.
            registry_url: Registry base URL.
            trusted_host: The only source host accepted for URL references.
            raw_host: Host serving raw files of ``trusted_host`` repositories.
            engine: Key under ``engines`` naming the host application.
        """
        self.fetcher = fetcher
        self.registry_url = registry_url if registry_url.endswith("/") else registry_url + "/"
        self.trusted_host = trusted_host
        self.raw_host = raw_host
        self.engine = engine

    async def resolve(self, ref: str) -> DistributionInfo:
        """Resolve a reference.

        Raises:
            ResolutionError: If the reference does not map to a valid extension.
        """
        if is_url(ref):
            return await self.resolve_uri(ref)
        return await self.resolve_registry(ref)

    async def _fetch(self, url: str, ref: str) -> Any:
        try:
            return await self.fetcher.fetch(url)
        except FetchError as e:
            raise ResolutionError(f"Cannot load info of {ref}: {e}") from e

    async def resolve_registry(self, ref: str) -> DistributionInfo:
        """Resolve ``name`` or ``name@version`` through the registry."""
        name, version = split_ref(ref)
        if not name:
            raise ResolutionError(f"Invalid extension reference: {ref!r}")

        url = urljoin(self.registry_url, quote(name, safe="@"))
        logger.debug("Loading registry document %s", url)
        doc = await self._fetch(url, ref)
        if not isinstance(doc, dict):
            raise ResolutionError(f"Registry returned an invalid document for {ref}")

        if not version:
            version = (doc.get("dist-tags") or {}).get("latest")
        entry = (doc.get("versions") or {}).get(version) if version else None
        if not entry:
            raise ResolutionError(f"{ref} not exists.")

        required = (entry.get("engines") or {}).get(self.engine)
        if not required:
            raise ResolutionError(
                f"{ref} is not a valid extension, \"engines\" field with "
                f"{self.engine} property required."
            )

        tarball = (entry.get("dist") or {}).get("tarball")
        if not tarball:
            raise ResolutionError(f"{ref} has no distribution tarball.")

        return DistributionInfo(
            tarball_url=tarball,
            required_host_version=required,
            version=entry.get("version"),
            name=doc.get("name") or name,
        )

    def raw_descriptor_url(self, uri: str) -> str:
        """URL of package.json on the default branch of a repository."""
        parts = urlsplit(uri)
        raw = urlunsplit(parts._replace(netloc=self.raw_host))
        return f"{raw}/{DEFAULT_BRANCH}/package.json"

    async def resolve_uri(self, uri: str) -> DistributionInfo:
        """Resolve a source repository URL on the trusted host."""
        if not host_matches(uri, self.trusted_host):
            raise ResolutionError(
                f'"{uri}" is not supported, only {self.trusted_host} '
                "repositories can be installed from a URL."
            )

        uri = uri[:-1] if uri.endswith("/") else uri
        content = await self._fetch(self.raw_descriptor_url(uri), uri)

        if isinstance(content, (str, bytes)):
            try:
                content = json.loads(content)
            except ValueError as e:
                raise ResolutionError(f"Invalid package.json in {uri}: {e}") from e
        if not isinstance(content, dict):
            raise ResolutionError(f"Invalid package.json in {uri}")
        if not content.get("name"):
            raise ResolutionError(f"package.json in {uri} has no name")

        return DistributionInfo(
            tarball_url=f"{uri}/archive/{DEFAULT_BRANCH}.tar.gz",
            required_host_version=(content.get("engines") or {}).get(self.engine),
            name=content.get("name"),
            version=content.get("version"),
        )
