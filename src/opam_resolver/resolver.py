"""Public entry points: resolve ``@opam/*`` requests and fetch the result."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from opam_resolver.common.http_client import HttpClient
from opam_resolver.common.process import CommandRunner
from opam_resolver.config import OpamConfig
from opam_resolver.constants import Constants
from opam_resolver.errors import no_compatible_version
from opam_resolver.fetchers.opam_fetcher import FetchResult, OpamFetcher
from opam_resolver.manifest import Manifest
from opam_resolver.repository import checkout
from opam_resolver.repository.collector import ManifestCollector
from opam_resolver.versioning.resolver import VersionResolver
from opam_resolver.versioning.semver import is_valid_range, normalize_range

logger = logging.getLogger(__name__)

_SCOPE_PREFIX = f"@{Constants.OPAM_SCOPE}/"


def parse_resolution(fragment: str) -> Tuple[str, str]:
    """``@opam/name@range`` -> ``(name, range)``; the range defaults to ``*``."""
    if fragment.startswith(_SCOPE_PREFIX):
        fragment = fragment[len(_SCOPE_PREFIX):]
    name, _, version_range = fragment.partition("@")
    return name, version_range or Constants.MATCH_ALL_VERSIONS


def is_opam_pattern(pattern: str) -> bool:
    """True for ``@opam/name@range`` patterns carrying a valid range."""
    if not pattern.startswith(f"@{Constants.OPAM_SCOPE}"):
        return False
    _, sep, constraint = pattern[1:].partition("@")
    return bool(sep) and is_valid_range(constraint)


def remote_reference(manifest: Manifest) -> Dict[str, Any]:
    reference = manifest.reference
    return {
        "type": Constants.OPAM_SCOPE,
        "registry": "npm",
        "hash": manifest.opam.checksum,
        "reference": reference,
        "resolved": reference,
    }


async def resolve(
    name: str,
    version_range: Optional[str] = None,
    config: Optional[OpamConfig] = None,
    peer_version: Optional[str] = None,
    locked: Union[Manifest, Dict[str, Any], None] = None,
    request_path: Optional[Sequence[str]] = None,
    runner: Optional[CommandRunner] = None,
    http: Optional[HttpClient] = None,
) -> Manifest:
    """Resolve ``name`` (without the ``@opam/`` scope) to a single manifest.

    Args:
        name: Opam package name.
        version_range: npm-style range; ``None`` and ``"latest"`` mean any.
        config: Runtime configuration, read from the environment if omitted.
        peer_version: Toolchain (``ocaml``) version the result must support.
        locked: A previously locked manifest; returned as is when given.
        request_path: Dependency chain leading here, for error messages.
        runner: Process runner for git, mainly for tests.
        http: HTTP client for the archive index, mainly for tests.

    Raises:
        OpamResolverError: PACKAGE_NOT_FOUND, NO_COMPATIBLE_VERSION, OFFLINE,
            PROCESS_EXECUTION, REQUEST_FAILED or INVALID_METADATA.
    """
    if locked is not None:
        return locked if isinstance(locked, Manifest) else Manifest.from_dict(locked)

    config = config or OpamConfig.from_env()
    spec = normalize_range(version_range)
    repo = await checkout.init(config, runner, http)
    collection = await ManifestCollector(repo).get_manifest_collection(name)

    scoped = f"{_SCOPE_PREFIX}{name}"
    version = VersionResolver().choose(
        scoped, collection.versions, spec, peer_version=peer_version, request_path=request_path
    )
    if version is None:
        raise no_compatible_version(scoped, spec, request_path=request_path)

    manifest = collection.versions[version]
    manifest.remote = remote_reference(manifest)
    logger.debug("Resolved %s%s@%s to %s", _SCOPE_PREFIX, name, spec, manifest.content_hash)
    return manifest


async def lookup_manifest(
    name: str,
    version: str,
    config: Optional[OpamConfig] = None,
    runner: Optional[CommandRunner] = None,
    http: Optional[HttpClient] = None,
) -> Manifest:
    """Re-read the manifest of an exact, previously resolved version."""
    if name.startswith(_SCOPE_PREFIX):
        name = name[len(_SCOPE_PREFIX):]
    config = config or OpamConfig.from_env()
    repo = await checkout.init(config, runner, http)
    manifest = await ManifestCollector(repo).get_manifest(name, version)
    if manifest is None:
        raise no_compatible_version(f"{_SCOPE_PREFIX}{name}", version)
    manifest.remote = remote_reference(manifest)
    return manifest


async def fetch(
    manifest: Manifest,
    dest_dir: Optional[str] = None,
    config: Optional[OpamConfig] = None,
    http: Optional[HttpClient] = None,
    runner: Optional[CommandRunner] = None,
) -> FetchResult:
    """Materialize ``manifest`` into the package cache (or ``dest_dir``)."""
    config = config or OpamConfig.from_env()
    return await OpamFetcher(config, http=http, runner=runner).materialize(manifest, dest_dir)
