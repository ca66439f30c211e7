"""Pick the single best version of a package for a requested range."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Optional, Sequence

from opam_resolver.constants import Constants
from opam_resolver.errors import no_compatible_version
from opam_resolver.manifest import Manifest
from opam_resolver.versioning import opam_version
from opam_resolver.versioning.semver import normalize_range, satisfies, to_semver

logger = logging.getLogger(__name__)


def pick_version(versions: Iterable[str], version_range: Optional[str]) -> Optional[str]:
    """Return the newest version (opam ordering) satisfying ``version_range``.

    Versions are scanned newest first and the first match wins; versions
    that cannot be read as numbers are skipped. The original version string
    is returned, pre-release tags included.
    """
    spec = normalize_range(version_range)
    candidates = [v for v in versions if to_semver(v) is not None]
    for version in opam_version.sort_descending(candidates):
        if satisfies(version, spec):
            return version
    return None


class VersionResolver:
    """Chooses a version from a manifest collection, honoring the peer toolchain."""

    def __init__(self, peer_name: str = Constants.PEER_TOOLCHAIN) -> None:
        self.peer_name = peer_name

    def compatible_with_peer(self, manifest: Manifest, peer_version: str) -> bool:
        # A missing peer declaration accepts any toolchain.
        peer_range = manifest.peer_dependencies.get(self.peer_name, "*")
        return satisfies(peer_version, peer_range)

    def filter_by_peer(
        self, manifests: Mapping[str, Manifest], peer_version: Optional[str]
    ) -> List[str]:
        if peer_version is None:
            return list(manifests)
        return [
            version
            for version, manifest in manifests.items()
            if self.compatible_with_peer(manifest, peer_version)
        ]

    def choose(
        self,
        name: str,
        manifests: Mapping[str, Manifest],
        version_range: Optional[str],
        peer_version: Optional[str] = None,
        request_path: Optional[Sequence[str]] = None,
    ) -> Optional[str]:
        """Select the version to use for ``name``.

        Args:
            name: Package name, used in error messages.
            manifests: Available versions mapped to their manifests.
            version_range: Requested range; ``None`` and ``"latest"`` mean any.
            peer_version: Toolchain version that each candidate's peer
                dependency must accept.
            request_path: Dependency chain that led here, for error messages.

        Returns:
            The chosen version string, or None if nothing matches the range.

        Raises:
            OpamResolverError: NO_COMPATIBLE_VERSION when the peer filter
                eliminates every version.
        """
        spec = normalize_range(version_range)
        versions = self.filter_by_peer(manifests, peer_version)
        if peer_version is not None and not versions:
            raise no_compatible_version(name, spec, peer_version, request_path)
        chosen = pick_version(versions, spec)
        logger.debug(
            "Resolved %s@%s to %s (%d candidates)", name, spec, chosen, len(versions)
        )
        return chosen
