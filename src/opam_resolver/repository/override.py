"""Community overrides for opam packages.

The override repository holds one directory per ``<package>.<range>`` entry
(``foo.1.x``, ``foo.>=1.0.0_<2.0.0``, or a bare ``foo`` for every version),
each with a ``package.yaml`` or ``package.json`` descriptor and an optional
``files/`` directory.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from opam_resolver.common import fs
from opam_resolver.common.singleflight import SingleFlight
from opam_resolver.config import OpamConfig
from opam_resolver.constants import Constants
from opam_resolver.errors import invalid_metadata
from opam_resolver.manifest import ExportedEnvVar, File, Manifest, normalize_build
from opam_resolver.repository.git import RepositorySync
from opam_resolver.versioning.semver import satisfies, strip_prerelease

logger = logging.getLogger(__name__)


@dataclass
class OverrideRecord:
    """One override entry, fully populated with defaults."""

    build: Optional[List[Any]] = None
    install: Optional[List[Any]] = None
    dependencies: Dict[str, str] = field(default_factory=dict)
    exported_env: Dict[str, ExportedEnvVar] = field(default_factory=dict)
    files: List[File] = field(default_factory=list)
    url: Optional[str] = None
    checksum: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_data(cls, data: Any, path: str = "<override>") -> "OverrideRecord":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise invalid_metadata(path, "override descriptor must be a mapping")
        opam = data.get("opam") or {}
        files = [
            File(name=str(f["name"]), content=str(f.get("content", "")))
            for f in opam.get("files") or []
        ]
        return cls(
            build=normalize_build(data["build"]) if data.get("build") is not None else None,
            install=normalize_build(data["install"]) if data.get("install") is not None else None,
            dependencies={str(k): str(v) for k, v in (data.get("dependencies") or {}).items()},
            exported_env={
                str(k): ExportedEnvVar.from_dict(v)
                for k, v in (data.get("exportedEnv") or {}).items()
            },
            files=files,
            url=opam.get("url"),
            checksum=opam.get("checksum"),
            raw=data,
        )

    def serialize(self) -> str:
        """Stable serialization fed into the manifest content hash."""
        data = dict(self.raw)
        # files/ entries are not part of the descriptor but are part of the override
        data["files"] = [f.to_dict() for f in self.files]
        return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


@dataclass
class OverrideStore:
    checkout_path: str
    # package name -> [(version range, override)] in iteration order
    overrides: Dict[str, List[Tuple[str, OverrideRecord]]] = field(default_factory=dict)

    def for_package(self, name: str) -> List[Tuple[str, OverrideRecord]]:
        return self.overrides.get(name, [])

    def matching(self, manifest: Manifest) -> List[OverrideRecord]:
        entries = self.for_package(manifest.opam_name)
        if not entries:
            return []
        try:
            version = strip_prerelease(manifest.version)
        except ValueError:
            logger.debug("Cannot match overrides for non-numeric version %s", manifest.version)
            return []
        return [record for version_range, record in entries if satisfies(version, version_range)]


def parse_override_spec(spec: str) -> Tuple[str, str]:
    """Split ``name.range`` into ``(name, range)``; underscores become spaces."""
    name, sep, version_range = spec.partition(".")
    if not sep:
        return spec, Constants.MATCH_ALL_VERSIONS
    return name, version_range.replace("_", " ")


async def read_override(root: str) -> Optional[OverrideRecord]:
    """Read the YAML or JSON descriptor of one override entry, if any."""
    yaml_path = os.path.join(root, Constants.OVERRIDE_YAML_FILE)
    json_path = os.path.join(root, Constants.OVERRIDE_JSON_FILE)
    if await fs.exists(yaml_path):
        text = await fs.read_text(yaml_path)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise invalid_metadata(yaml_path, str(exc)) from exc
        record = OverrideRecord.from_data(data, yaml_path)
    elif await fs.exists(json_path):
        text = await fs.read_text(json_path)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise invalid_metadata(json_path, str(exc)) from exc
        record = OverrideRecord.from_data(data, json_path)
    else:
        return None

    files_dir = os.path.join(root, Constants.FILES_DIR)
    if await fs.is_dir(files_dir):
        record.files.extend(await read_files_dir(files_dir))
    return record


async def read_files_dir(files_dir: str) -> List[File]:
    """Read every file below ``files_dir`` keyed by its relative path."""

    def walk() -> List[str]:
        found = []
        for dirpath, _dirnames, filenames in os.walk(files_dir):
            for filename in filenames:
                found.append(os.path.relpath(os.path.join(dirpath, filename), files_dir))
        return sorted(found)

    names = await asyncio.to_thread(walk)
    contents = await asyncio.gather(
        *(fs.read_blob(os.path.join(files_dir, name)) for name in names)
    )
    return [File(name=name.replace(os.sep, "/"), content=content) for name, content in zip(names, contents)]


async def load_overrides(checkout_path: str) -> OverrideStore:
    packages_dir = os.path.join(checkout_path, Constants.PACKAGES_DIR)
    store = OverrideStore(checkout_path=checkout_path)
    if not await fs.is_dir(packages_dir):
        logger.warning("Override checkout %s has no %s directory", checkout_path, Constants.PACKAGES_DIR)
        return store

    specs = await fs.readdir(packages_dir)
    records = await asyncio.gather(
        *(read_override(os.path.join(packages_dir, spec)) for spec in specs)
    )
    for spec, record in zip(specs, records):
        if record is None:
            continue
        name, version_range = parse_override_spec(spec)
        store.overrides.setdefault(name, []).append((version_range, record))
    logger.debug("Loaded overrides for %d packages", len(store.overrides))
    return store


def apply_override(store: OverrideStore, manifest: Manifest) -> Manifest:
    """Apply every override whose range matches the manifest version.

    Build command, exported environment, extra files and dependencies are
    updated in that order for each matching record. The content hash is a
    digest seeded with the previous hash and updated with each applied
    record, in order; with no matching record the manifest is untouched.
    """
    matching = store.matching(manifest)
    if not matching:
        return manifest

    hasher = hashlib.sha256()
    hasher.update(manifest.content_hash.encode("utf-8"))
    for record in matching:
        if record.build is not None:
            manifest.esy.build = list(record.build)
        if record.install is not None:
            manifest.esy.install = list(record.install)
        manifest.esy.exported_env = {**manifest.esy.exported_env, **record.exported_env}
        manifest.opam.files = manifest.opam.files + list(record.files)
        manifest.dependencies = {**manifest.dependencies, **record.dependencies}
        if record.url is not None:
            manifest.opam.url = record.url
            manifest.opam.checksum = record.checksum
            manifest.opam.prebuilt = False
        hasher.update(record.serialize().encode("utf-8"))
    manifest.content_hash = hasher.hexdigest()
    return manifest


def supplies_source(store: OverrideStore, manifest: Manifest) -> bool:
    """True when a matching override replaces the package source URL."""
    return any(record.url is not None for record in store.matching(manifest))


_overrides: SingleFlight[OverrideStore] = SingleFlight()


async def _sync_override_checkout(config: OpamConfig, sync: RepositorySync) -> str:
    if config.override_checkout:
        return config.override_checkout
    checkout_path = config.override_checkout_path

    def on_clone() -> None:
        logger.info("Cloning esy-ocaml/esy-opam-override (this might take a while)...")

    def on_update() -> None:
        logger.info("Updating esy-ocaml/esy-opam-override checkout (this might take a while)...")

    await sync.sync(
        config.override_url,
        checkout_path,
        branch=config.branch,
        on_clone=on_clone,
        on_update=on_update,
    )
    return checkout_path


async def init(config: OpamConfig, sync: Optional[RepositorySync] = None) -> OverrideStore:
    """Return the process-wide override store, loading it on first use."""

    async def _load() -> OverrideStore:
        syncer = sync or RepositorySync(offline=config.offline, prefer_offline=config.prefer_offline)
        checkout_path = await _sync_override_checkout(config, syncer)
        return await load_overrides(checkout_path)

    return await _overrides.get(_load)


def reset() -> None:
    _overrides.reset()
