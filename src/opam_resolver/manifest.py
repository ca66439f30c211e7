"""Normalized package manifest produced from opam metadata."""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from opam_resolver.constants import Constants

Command = Union[str, List[str]]


@dataclass
class File:
    """Extra file written next to the package sources at fetch time."""

    name: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "content": self.content}


@dataclass
class Patch:
    """Patch applied to the package sources at fetch time."""

    name: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "content": self.content}


@dataclass
class ExportedEnvVar:
    value: str
    scope: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"val": self.value}
        if self.scope is not None:
            data["scope"] = self.scope
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ExportedEnvVar":
        if isinstance(data, dict):
            value = data.get("val", data.get("value", ""))
            scope = data.get("scope")
            return cls(value=str(value), scope=str(scope) if scope is not None else None)
        return cls(value=str(data))


@dataclass
class EsyConfig:
    build: List[Command] = field(default_factory=list)
    install: List[Command] = field(default_factory=list)
    exported_env: Dict[str, ExportedEnvVar] = field(default_factory=dict)
    builds_in_source: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "build": copy.deepcopy(self.build),
            "install": copy.deepcopy(self.install),
            "buildsInSource": self.builds_in_source,
            "exportedEnv": {k: v.to_dict() for k, v in self.exported_env.items()},
        }


@dataclass
class OpamInfo:
    """Where the sources come from plus the inert blobs attached to them."""

    name: str
    version: str
    url: Optional[str] = None
    checksum: Optional[str] = None
    files: List[File] = field(default_factory=list)
    patches: List[Patch] = field(default_factory=list)
    prebuilt: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "url": self.url,
            "checksum": self.checksum,
            "prebuilt": self.prebuilt,
            "files": [f.to_dict() for f in self.files],
            "patches": [p.to_dict() for p in self.patches],
        }


@dataclass
class Manifest:
    """One package version in the package manager's native shape.

    ``content_hash`` identifies the manifest for caching. It is recomputed
    whenever the manifest is mutated by an override or a URL lookup, never
    carried across a mutation.
    """

    name: str
    version: str
    opam: OpamInfo
    dependencies: Dict[str, str] = field(default_factory=dict)
    peer_dependencies: Dict[str, str] = field(default_factory=dict)
    opt_dependencies: Dict[str, str] = field(default_factory=dict)
    esy: EsyConfig = field(default_factory=EsyConfig)
    content_hash: str = ""
    remote: Optional[Dict[str, Any]] = None

    @property
    def opam_name(self) -> str:
        """Package name without the ``@opam/`` scope."""
        prefix = f"@{Constants.OPAM_SCOPE}/"
        if self.name.startswith(prefix):
            return self.name[len(prefix):]
        return self.name

    @property
    def reference(self) -> str:
        return f"{self.name}@{self.version}"

    def to_dict(self, include_hash: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "dependencies": dict(self.dependencies),
            "peerDependencies": dict(self.peer_dependencies),
            "optDependencies": dict(self.opt_dependencies),
            "esy": self.esy.to_dict(),
            "opam": self.opam.to_dict(),
        }
        if include_hash:
            data["_uid"] = self.content_hash
            if self.remote is not None:
                data["_remote"] = dict(self.remote)
        return data

    def canonical_json(self) -> str:
        """Stable serialization used for hashing (hash itself excluded)."""
        return json.dumps(self.to_dict(include_hash=False), sort_keys=True, separators=(",", ":"))

    def compute_content_hash(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    def refresh_content_hash(self) -> str:
        self.content_hash = self.compute_content_hash()
        return self.content_hash

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """Rebuild a manifest from ``to_dict`` output (e.g. a locked entry)."""
        esy = data.get("esy") or {}
        opam = data.get("opam") or {}
        return cls(
            name=data["name"],
            version=data["version"],
            dependencies=dict(data.get("dependencies") or {}),
            peer_dependencies=dict(data.get("peerDependencies") or {}),
            opt_dependencies=dict(data.get("optDependencies") or {}),
            esy=EsyConfig(
                build=list(esy.get("build") or []),
                install=list(esy.get("install") or []),
                exported_env={
                    k: ExportedEnvVar.from_dict(v)
                    for k, v in (esy.get("exportedEnv") or {}).items()
                },
                builds_in_source=bool(esy.get("buildsInSource", True)),
            ),
            opam=OpamInfo(
                name=opam.get("name", data["name"]),
                version=opam.get("version", data["version"]),
                url=opam.get("url"),
                checksum=opam.get("checksum"),
                files=[File(f["name"], f["content"]) for f in opam.get("files") or []],
                patches=[Patch(p["name"], p["content"]) for p in opam.get("patches") or []],
                prebuilt=bool(opam.get("prebuilt", False)),
            ),
            content_hash=data.get("_uid", ""),
            remote=data.get("_remote"),
        )


def normalize_build(build: Any) -> List[Command]:
    """Normalize a build/install value into a list of commands."""
    if build is None:
        return []
    if isinstance(build, str):
        return [build]
    commands: List[Command] = []
    for item in build:
        if isinstance(item, (list, tuple)):
            commands.append([str(arg) for arg in item])
        else:
            commands.append(str(item))
    return commands
