"""Convert a package's version directories into native manifests."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from opam_resolver.common import fs
from opam_resolver.common.logging_utils import is_debug_enabled
from opam_resolver.constants import Constants
from opam_resolver.errors import invalid_metadata, package_not_found
from opam_resolver.manifest import File, Manifest, Patch
from opam_resolver.opamfile import parse_opam, parse_url_file, render_opam
from opam_resolver.opamfile.render import UrlDescriptor
from opam_resolver.repository import urls
from opam_resolver.repository.checkout import RepositoryCheckout
from opam_resolver.repository.override import apply_override, read_files_dir, supplies_source

logger = logging.getLogger(__name__)


@dataclass
class ManifestCollection:
    name: str
    versions: Dict[str, Manifest] = field(default_factory=dict)


def version_from_spec(spec: str) -> str:
    """``foo.1.2.3`` -> ``1.2.3``: drop the leading package-name segment."""
    _, _, version = spec.partition(".")
    return version


class ManifestCollector:
    """Builds the version -> manifest map for one package of a checkout."""

    def __init__(self, checkout: RepositoryCheckout) -> None:
        self.checkout = checkout

    def package_dir(self, name: str) -> str:
        return os.path.join(self.checkout.checkout_path, Constants.PACKAGES_DIR, name)

    async def get_manifest_collection(self, name: str) -> ManifestCollection:
        """Read every version of ``name``.

        Raises:
            OpamResolverError: PACKAGE_NOT_FOUND when the repository has no
                directory for the package, INVALID_METADATA for unreadable
                descriptors.
        """
        package_dir = self.package_dir(name)
        if not await fs.is_dir(package_dir):
            raise package_not_found(f"@{Constants.OPAM_SCOPE}/{name}")

        specs = [s for s in await fs.readdir(package_dir) if "." in s]
        manifests = await asyncio.gather(
            *(self.convert(name, spec, os.path.join(package_dir, spec)) for spec in specs)
        )
        collection = ManifestCollection(name=name)
        for manifest in manifests:
            collection.versions[manifest.version] = manifest
        if is_debug_enabled(logger):
            logger.debug("Collected %d versions of %s", len(collection.versions), name)
        return collection

    async def get_manifest(self, name: str, version: str) -> Optional[Manifest]:
        """Read a single version of ``name``, or None if it does not exist."""
        package_dir = self.package_dir(name)
        if not await fs.is_dir(package_dir):
            raise package_not_found(f"@{Constants.OPAM_SCOPE}/{name}")
        spec = f"{name}.{version}"
        version_dir = os.path.join(package_dir, spec)
        if not await fs.is_dir(version_dir):
            return None
        return await self.convert(name, spec, version_dir)

    async def convert(self, name: str, spec: str, version_dir: str) -> Manifest:
        version = version_from_spec(spec)
        opam_path = os.path.join(version_dir, Constants.OPAM_FILE)
        if not await fs.exists(opam_path):
            raise invalid_metadata(opam_path, "missing opam file")
        try:
            text = await fs.read_text(opam_path)
        except UnicodeDecodeError as exc:
            raise invalid_metadata(opam_path, f"not valid UTF-8: {exc}") from exc
        opam_file = parse_opam(text, opam_path)
        rendered = render_opam(name, version, opam_file)
        manifest = rendered.manifest

        url = await self._resolve_url(manifest, version_dir, rendered.url)
        if url is not None:
            manifest.opam.url = url.url
            manifest.opam.checksum = url.checksum

        patches, files = await self._read_attachments(version_dir, rendered.patch_names)
        manifest.opam.patches.extend(patches)
        manifest.opam.files.extend(files)

        manifest.refresh_content_hash()
        return apply_override(self.checkout.overrides, manifest)

    async def _resolve_url(
        self, manifest: Manifest, version_dir: str, embedded: Optional[UrlDescriptor]
    ) -> Optional[UrlDescriptor]:
        # An override carrying its own source wins later, in apply_override.
        if not supplies_source(self.checkout.overrides, manifest):
            entry = urls.resolve(self.checkout.url_index, manifest.opam.name, manifest.opam.version)
            if entry is not None:
                manifest.opam.prebuilt = True
                return UrlDescriptor(url=entry.url, checksum=entry.checksum)

        url_path = os.path.join(version_dir, Constants.URL_FILE)
        if await fs.exists(url_path):
            return parse_url_file(await fs.read_text(url_path), url_path)
        return embedded

    async def _read_attachments(
        self, version_dir: str, patch_names: List[str]
    ) -> Tuple[List[Patch], List[File]]:
        files_dir = os.path.join(version_dir, Constants.FILES_DIR)
        if not await fs.is_dir(files_dir):
            if patch_names:
                logger.warning("Patches %s referenced but %s is missing", patch_names, files_dir)
            return [], []

        loose = await read_files_dir(files_dir)
        by_name = {f.name: f for f in loose}
        patches: List[Patch] = []
        for patch_name in patch_names:
            blob = by_name.pop(patch_name, None)
            if blob is None:
                raise invalid_metadata(
                    os.path.join(files_dir, patch_name), "referenced patch does not exist"
                )
            patches.append(Patch(name=blob.name, content=blob.content))
        return patches, list(by_name.values())
