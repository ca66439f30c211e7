"""Materialize a resolved opam manifest into the package cache.

Per fetch::

    START -> DOWNLOAD (url) | SYNTHESIZE (no url) -> REPACK -> CACHE_PLACE
          -> MIRROR (optional) -> UNPACK -> DONE

Any failure aborts the whole fetch; the canonical tarball only appears in
the cache directory once everything before it succeeded, so its presence
marks a complete entry.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from opam_resolver.common import fs
from opam_resolver.common.http_client import HttpClient
from opam_resolver.common.logging_utils import Timer, extra_context, safe_url
from opam_resolver.common.process import CommandRunner, default_runner
from opam_resolver.common.singleflight import KeyedLock
from opam_resolver.config import OpamConfig
from opam_resolver.constants import Constants
from opam_resolver.errors import checksum_mismatch, invalid_metadata, offline_error
from opam_resolver.fetchers import archive
from opam_resolver.manifest import File, Manifest, Patch

logger = logging.getLogger(__name__)

_fetch_locks = KeyedLock()


@dataclass
class FetchResult:
    content_hash: str
    archive_path: str
    # md5 of the downloaded upstream archive, when one was downloaded
    archive_checksum: Optional[str] = None


def tarball_filename(manifest: Manifest) -> str:
    """``@opam-<name>@<version>-<hash>.tgz``, the name used in the offline mirror."""
    return (
        f"@{Constants.OPAM_SCOPE}-{manifest.opam_name}@{manifest.version}"
        f"-{manifest.content_hash}.tgz"
    )


def package_cache_key(manifest: Manifest) -> str:
    return f"{Constants.OPAM_SCOPE}-{manifest.opam_name}-{manifest.version}-{manifest.content_hash}"


class OpamFetcher:
    """Turns manifests into canonical tarballs unpacked in the package cache."""

    def __init__(
        self,
        config: OpamConfig,
        http: Optional[HttpClient] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config = config
        self.http = http
        self.runner = runner or default_runner()

    async def materialize(self, manifest: Manifest, dest_dir: Optional[str] = None) -> FetchResult:
        """Fetch ``manifest`` into ``dest_dir`` (its package cache directory by default).

        Concurrent fetches of the same destination are serialized; the
        second one finds the finished tarball and returns it.

        Raises:
            OpamResolverError: CHECKSUM_MISMATCH when the download does not
                match the expected md5, OFFLINE when the sources are not
                available locally, REQUEST_FAILED or PROCESS_EXECUTION when
                a download or a patch fails.
        """
        if not manifest.content_hash:
            manifest.refresh_content_hash()
        dest = dest_dir or self.config.package_cache_path(package_cache_key(manifest))
        tarball_path = os.path.join(dest, Constants.TARBALL_FILENAME)

        async with _fetch_locks.hold(os.path.abspath(dest)):
            if await fs.exists(tarball_path):
                logger.debug("Cache hit for %s at %s", manifest.reference, dest)
                return FetchResult(manifest.content_hash, tarball_path)

            with Timer() as timer:
                result = await self._fetch(manifest, dest, tarball_path)
            logger.info(
                "Fetched %s",
                manifest.reference,
                extra=extra_context(
                    event="fetch",
                    component="fetcher",
                    outcome="success",
                    duration_ms=timer.duration_ms(),
                    package_name=manifest.name,
                    target=dest,
                ),
            )
            return result

    async def _fetch(self, manifest: Manifest, dest: str, tarball_path: str) -> FetchResult:
        mirror_path = self.config.offline_mirror_path(tarball_filename(manifest))
        if mirror_path is not None and await fs.exists(mirror_path):
            logger.debug("Using offline mirror copy %s", mirror_path)
            await self._place(mirror_path, dest, tarball_path, copy=True)
            return FetchResult(manifest.content_hash, tarball_path)

        temp_dir = await fs.make_temp_dir("opam-fetch-", self.config.temp_folder)
        try:
            checksum = None
            if manifest.opam.url:
                staging, checksum = await self.download(manifest, temp_dir)
            else:
                staging = os.path.join(temp_dir, Constants.TARBALL_PREFIX)
                await fs.mkdirp(staging)

            await self.write_descriptor(staging, manifest)
            await self.write_files(staging, manifest.opam.files)
            if manifest.opam.url and manifest.opam.prebuilt:
                logger.debug("Skipping patches for prebuilt archive of %s", manifest.reference)
            else:
                await self.apply_patches(staging, manifest.opam.patches, temp_dir)

            temp_tarball = os.path.join(temp_dir, tarball_filename(manifest))
            await asyncio.to_thread(archive.pack_directory, staging, temp_tarball)
            await self._place(temp_tarball, dest, tarball_path)
        finally:
            await fs.rmtree(temp_dir)

        if mirror_path is not None:
            await fs.copy(tarball_path, mirror_path)
        return FetchResult(manifest.content_hash, tarball_path, checksum)

    async def _place(self, source: str, dest: str, tarball_path: str, copy: bool = False) -> None:
        await fs.mkdirp(dest)
        await asyncio.to_thread(archive.unpack_tarball, source, dest)
        if copy:
            await fs.copy(source, tarball_path)
        else:
            await fs.rename(source, tarball_path)

    async def download(self, manifest: Manifest, temp_dir: str) -> Tuple[str, str]:
        """Download and verify the upstream archive, unpack it, return its root."""
        url = manifest.opam.url or ""
        if self.config.offline:
            raise offline_error(f"download {safe_url(url)}")

        download_path = os.path.join(temp_dir, Constants.DOWNLOAD_FILENAME)
        hasher = hashlib.md5()
        client = self.http or HttpClient(timeout=self.config.request_timeout)
        try:
            await client.download(url, download_path, hasher)
        finally:
            if self.http is None:
                await client.stop()

        actual = hasher.hexdigest()
        expected = manifest.opam.checksum
        if expected and actual != expected.lower():
            logger.error(
                "Checksum mismatch for %s",
                manifest.reference,
                extra=extra_context(
                    event="checksum",
                    component="fetcher",
                    outcome="mismatch",
                    target=safe_url(url),
                ),
            )
            raise checksum_mismatch(safe_url(url), expected, actual)

        unpacked = os.path.join(temp_dir, "src")
        await asyncio.to_thread(
            archive.unpack_archive, download_path, unpacked, archive.tarball_format_from_filename(url)
        )
        await fs.unlink(download_path)
        return await asyncio.to_thread(archive.source_root, unpacked), actual

    async def write_descriptor(self, staging: str, manifest: Manifest) -> None:
        path = os.path.join(staging, Constants.PACKAGE_DESCRIPTOR_FILE)
        await fs.write_text(path, json.dumps(manifest.to_dict(), indent=2))

    async def write_files(self, staging: str, files: List[File]) -> None:
        await asyncio.gather(
            *(fs.write_blob(_join(staging, f.name), f.content) for f in files)
        )

    async def apply_patches(self, staging: str, patches: List[Patch], temp_dir: str) -> None:
        """Apply ``patches`` in order; each patch file is removed afterwards."""
        for index, patch in enumerate(patches):
            patch_path = os.path.join(temp_dir, f"{index}-{os.path.basename(patch.name)}")
            await fs.write_blob(patch_path, patch.content)
            try:
                await self.runner.run(["patch", "-p1", "-i", patch_path], cwd=staging)
            finally:
                await fs.unlink(patch_path)


def _join(root: str, name: str) -> str:
    target = archive.safe_join(root, name)
    if target is None:
        raise invalid_metadata(name, "file path escapes the package directory")
    return target
