"""Host compatibility checks.

Extensions declare the host versions they work with as npm-style range
expressions (``>=0.0.80``, ``^0.0.80``, ``>=1.0.0 <2.0.0 || 3.x``). A leading
caret is relaxed to a plain floor before checking: ``^0.0.80`` accepts any
host from 0.0.80 up, with no upper bound.

Versions are ordered by semver precedence, so ``1.0.0-1`` and
``1.0.0-next.1`` both sort before ``1.0.0``.
"""

from __future__ import annotations

import logging
import re

from semantic_version import NpmSpec, Version

from extensions.errors import IncompatibleHostError

logger = logging.getLogger(__name__)

_OPERATOR_SPACE_RE = re.compile(r"(>=|<=|>|<|=|\^|~)\s+")


def parse_version(value: str) -> Version:
    """Parse a semver string, tolerating a ``v`` prefix and short forms.

    Build metadata is dropped; it takes no part in precedence.

    Raises:
        ValueError: If the string is not a version.
    """
    text = value.strip().lstrip("=v").split("+", 1)[0]
    try:
        return Version(text)
    except ValueError:
        return Version.coerce(text)


def parse_range(range_expr: str) -> NpmSpec:
    """Parse an npm-style range expression.

    Raises:
        ValueError: If the expression cannot be parsed.
    """
    expression = _OPERATOR_SPACE_RE.sub(r"\1", range_expr.strip())
    return NpmSpec(expression or "*")


def relax_range(required: str) -> str:
    """Rewrite a leading caret range into an "at least" range."""
    required = required.strip()
    if required.startswith("^"):
        return ">=" + required[1:]
    return required


def satisfies(version: str, range_expr: str) -> bool:
    """Check whether a version satisfies an npm-style range expression.

    Raises:
        ValueError: If the version or the range cannot be parsed.
    """
    return parse_range(range_expr).match(parse_version(version))


def check_compatibility(
    required: str | None,
    host_version: str,
    name: str | None = None,
    version: str | None = None,
) -> None:
    """Reject an extension the host is too old to run.

    Args:
        required: The extension's declared host range, None for no constraint.
        host_version: The running host's version.
        name: Extension name, for the error message.
        version: Extension version, for the error message.

    Raises:
        IncompatibleHostError: If the relaxed range is not satisfied.
    """
    if not required:
        return

    relaxed = relax_range(required)
    label = " ".join(part for part in (name, version) if part) or "Extension"
    try:
        ok = satisfies(host_version, relaxed)
    except ValueError as e:
        raise IncompatibleHostError(
            f"{label} declares an unusable host range {required!r}: {e}"
        ) from e

    if not ok:
        raise IncompatibleHostError(
            f"{label} requires host {relaxed}, running {host_version}. "
            "Please update the host application."
        )
    logger.debug("%s accepts host %s (%s)", label, host_version, relaxed)


def is_newer_or_equal(installed: str, candidate: str) -> bool:
    """Whether the installed version is at least the candidate version.

    Versions that cannot be parsed never count as up to date.
    """
    try:
        return parse_version(installed) >= parse_version(candidate)
    except ValueError:
        logger.warning("Cannot compare versions %r and %r", installed, candidate)
        return False
