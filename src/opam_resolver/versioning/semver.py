"""Semver range satisfaction for opam versions.

Opam versions are not semver; they are coerced (``4.02.3`` -> ``4.2.3``,
``v1.2`` -> ``1.2.0``, ``1.0+beta`` -> ``1.0.0+beta``) before matching
against npm-style ranges with ``semantic_version.NpmSpec``.
"""

from __future__ import annotations

import functools
import logging
import re
from typing import Optional, Union

import semantic_version

logger = logging.getLogger(__name__)

Spec = Union[semantic_version.NpmSpec, semantic_version.SimpleSpec]

_WILDCARD_RE = re.compile(r"^\s*[xX*](?:\.[xX*]){0,2}\s*$")
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~|\^)\s+")


def to_semver(version: str) -> Optional[semantic_version.Version]:
    """Coerce an opam version into a semver Version, or None if impossible."""
    if not version:
        return None
    candidate = version.strip()
    if candidate[:1] in ("v", "V") and candidate[1:2].isdigit():
        candidate = candidate[1:]
    try:
        return semantic_version.Version.coerce(candidate)
    except ValueError:
        return None


def strip_prerelease(version: str) -> str:
    """Drop pre-release and build tags so wildcard ranges accept the version.

    Raises:
        ValueError: if the version has no numeric component.
    """
    parsed = to_semver(version)
    if parsed is None:
        raise ValueError(f"Invalid version: {version}")
    return str(parsed.truncate("patch"))


def normalize_range(version_range: Optional[str]) -> str:
    """Map ``None``/``latest``/wildcards to ``*`` and tidy operator spacing."""
    if version_range is None:
        return "*"
    s = version_range.strip()
    if not s or s.lower() == "latest" or _WILDCARD_RE.match(s):
        return "*"
    s = _OPERATOR_SPACE_RE.sub(r"\1", s)
    return re.sub(r"\s+", " ", s)


def _fallback_spec(spec_str: str) -> str:
    """Rewrite hyphen and x-ranges into SimpleSpec-compatible comparators."""
    s = spec_str.strip()

    m = re.match(r"^\s*([0-9A-Za-z.\-+]+)\s+-\s+([0-9A-Za-z.\-+]+)\s*$", s)
    if m:
        return f">={m.group(1)},<={m.group(2)}"

    s2 = s.replace("*", "x").lower()
    m = re.match(r"^\s*(\d+)\.(\d+)\.x\s*$", s2)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

    m = re.match(r"^\s*(\d+)(?:\.x)?\s*$", s2)
    if m:
        major = int(m.group(1))
        return f">={major}.0.0,<{major + 1}.0.0"

    return ",".join(s.split())


@functools.lru_cache(maxsize=1024)
def parse_range(version_range: str) -> Spec:
    """Parse an npm-style range, falling back to SimpleSpec syntax.

    Raises:
        ValueError: if neither grammar accepts the range.
    """
    norm = normalize_range(version_range)
    try:
        return semantic_version.NpmSpec(norm)
    except ValueError:
        return semantic_version.SimpleSpec(_fallback_spec(norm))


def is_valid_range(version_range: Optional[str]) -> bool:
    try:
        parse_range(normalize_range(version_range))
    except ValueError:
        return False
    return True


def satisfies(version: str, version_range: Optional[str]) -> bool:
    """True if the pre-release-stripped ``version`` is inside ``version_range``.

    Unparseable versions or ranges never satisfy.
    """
    parsed = to_semver(version)
    if parsed is None:
        logger.debug("Skipping non-numeric version %s", version)
        return False
    try:
        spec = parse_range(normalize_range(version_range))
    except ValueError:
        logger.debug("Invalid version range %r", version_range)
        return False
    return spec.match(parsed.truncate("patch"))


def render_semver(version: str) -> str:
    """Render an opam version for use inside a range (``4.02`` -> ``4.2.0``)."""
    parsed = to_semver(version)
    if parsed is None:
        return version
    return str(parsed.truncate("patch"))
