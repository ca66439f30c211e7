"""Convert parsed opam metadata into native manifests.

Dependency constraints are rewritten as npm-style ranges, build and install
commands become argv lists with opam variables mapped onto the esy build
environment, and filters are evaluated against a fixed "plain build"
environment (no tests, no docs, not a dev checkout).
"""

from __future__ import annotations

import logging
import platform
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from opam_resolver.constants import Constants
from opam_resolver.manifest import EsyConfig, Manifest, OpamInfo
from opam_resolver.opamfile.parser import (
    Defined,
    Group,
    Ident,
    Logop,
    Not,
    OpamFile,
    Option,
    Prefix,
    Relop,
    parse_opam,
)
from opam_resolver.versioning import opam_version
from opam_resolver.versioning.semver import render_semver

logger = logging.getLogger(__name__)

_SCOPE_PREFIX = f"@{Constants.OPAM_SCOPE}/"
_SKIP_DEP_FLAGS = {"test", "doc", "with-test", "with-doc", "dev", "with-dev-setup"}
_DEP_FLAGS = _SKIP_DEP_FLAGS | {"build", "post"}
_VARIABLE_RE = re.compile(r"%\{([^}]+)\}%")
_VCS_URL_KEYS = ("git", "darcs", "hg")
_ARCHIVE_URL_KEYS = ("archive", "http", "src", "local")

_OPAM_VARIABLES = {
    "prefix": "$cur__install",
    "lib": "$cur__lib",
    "libexec": "$cur__lib",
    "bin": "$cur__bin",
    "sbin": "$cur__sbin",
    "share": "$cur__share",
    "doc": "$cur__doc",
    "man": "$cur__man",
    "etc": "$cur__etc",
    "stublibs": "$cur__stublibs",
    "toplevel": "$cur__toplevel",
    "build": "$cur__target_dir",
    "make": "make",
    "jobs": "4",
    "ocaml-native": "true",
    "ocaml:native": "true",
    "ocaml:native-dynlink": "true",
    "ocaml-native-dynlink": "true",
    "preinstalled": "false",
    "pinned": "false",
}


def _os_name() -> str:
    system = platform.system()
    return {"Darwin": "macos", "Windows": "win32"}.get(system, system.lower())


_FILTER_ENV: Dict[str, Any] = {
    "with-test": False,
    "with-doc": False,
    "with-dev-setup": False,
    "test": False,
    "doc": False,
    "dev": False,
    "pinned": False,
    "build": True,
    "post": False,
    "os": _os_name(),
}


@dataclass
class UrlDescriptor:
    url: Optional[str]
    checksum: Optional[str]


@dataclass
class RenderedPackage:
    """A freshly rendered manifest plus the raw references it still needs."""

    manifest: Manifest
    patch_names: List[str] = field(default_factory=list)
    url: Optional[UrlDescriptor] = None


class _Renderer:
    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version
        self.variables = dict(_OPAM_VARIABLES)
        self.variables.update({"name": name, "version": version, "_:name": name, "_:version": version})

    # -- filters -------------------------------------------------------

    def lookup(self, var: str) -> Any:
        if var in ("version", "_:version"):
            return self.version
        if var in ("name", "_:name"):
            return self.name
        return _FILTER_ENV.get(var)

    def eval(self, expr: Any) -> Any:
        """Evaluate a filter expression; None means "unknown"."""
        if isinstance(expr, (str, bool, int)):
            return expr
        if isinstance(expr, Ident):
            return self.lookup(expr.name)
        if isinstance(expr, Group):
            return self.eval_all(expr.values)
        if isinstance(expr, Not):
            value = self.eval(expr.value)
            return None if value is None else not _truthy(value)
        if isinstance(expr, Defined):
            return self.eval(expr.value) is not None
        if isinstance(expr, Logop):
            left, right = self.eval(expr.left), self.eval(expr.right)
            if expr.op == "&":
                if left is False or right is False:
                    return False
                if left is None or right is None:
                    return None
                return _truthy(left) and _truthy(right)
            if left is True or right is True:
                return True
            if left is None or right is None:
                return None
            return _truthy(left) or _truthy(right)
        if isinstance(expr, Relop):
            left, right = self.eval(expr.left), self.eval(expr.right)
            if left is None or right is None:
                return None
            return _compare(expr.op, str(left), str(right))
        return None

    def eval_all(self, filters: List[Any]) -> Any:
        result: Any = True
        for item in filters:
            value = self.eval(item)
            if value is False or (value is not None and not _truthy(value)):
                return False
            if value is None:
                result = None
        return result

    def enabled(self, filters: List[Any]) -> bool:
        # Unknown variables keep the item.
        return self.eval_all(filters) is not False

    # -- strings -------------------------------------------------------

    def substitute(self, text: str) -> str:
        def repl(m: "re.Match[str]") -> str:
            var = m.group(1)
            if var.startswith("_:"):
                var = var[2:]
            if var in self.variables:
                return self.variables[var]
            if var.startswith(f"{self.name}:"):
                local = var[len(self.name) + 1:]
                if local in self.variables:
                    return self.variables[local]
            return m.group(0)

        return _VARIABLE_RE.sub(repl, text)

    def arg(self, value: Any) -> Optional[str]:
        if isinstance(value, Option):
            if not self.enabled(value.filters):
                return None
            return self.arg(value.value)
        if isinstance(value, str):
            return self.substitute(value)
        if isinstance(value, Ident):
            return self.variables.get(value.name, value.name)
        if isinstance(value, (bool, int)):
            return str(value).lower()
        return None

    def commands(self, value: Any) -> List[List[str]]:
        if value is None:
            return []
        items = value if isinstance(value, list) else [value]
        if items and all(not _is_command(item) for item in items):
            items = [items]
        result: List[List[str]] = []
        for item in items:
            filters: List[Any] = []
            if isinstance(item, Option):
                filters = item.filters
                item = item.value
            if not isinstance(item, list) or not self.enabled(filters):
                continue
            argv = [a for a in (self.arg(v) for v in item) if a is not None]
            if argv:
                result.append(argv)
        return result

    # -- dependencies --------------------------------------------------

    def dependencies(self, value: Any) -> Dict[str, str]:
        deps: Dict[str, str] = {}
        for name, filters in self._dep_atoms(value):
            flags = {f.name for f in _flag_idents(filters)}
            if flags & _SKIP_DEP_FLAGS:
                continue
            deps[name] = self.constraint_range(filters)
        return deps

    def _dep_atoms(self, value: Any) -> List[Tuple[str, List[Any]]]:
        if value is None:
            return []
        if isinstance(value, list):
            atoms: List[Tuple[str, List[Any]]] = []
            for item in value:
                atoms.extend(self._dep_atoms(item))
            return atoms
        if isinstance(value, str):
            return [(value, [])]
        if isinstance(value, Option) and isinstance(value.value, str):
            return [(value.value, value.filters)]
        if isinstance(value, Option):
            return self._dep_atoms(value.value)
        if isinstance(value, Group):
            return self._dep_atoms(value.values)
        if isinstance(value, Logop) and value.op == "&":
            return self._dep_atoms(value.left) + self._dep_atoms(value.right)
        if isinstance(value, Logop):
            # alternatives: take the first one
            return self._dep_atoms(value.left)
        return []

    def constraint_range(self, filters: List[Any]) -> str:
        dnf: Optional[List[List[str]]] = None
        for item in filters:
            dnf = _and(dnf, self.dnf(item))
        return _join_range(dnf)

    def dnf(self, expr: Any) -> Optional[List[List[str]]]:
        if isinstance(expr, Prefix):
            version = expr.value
            if isinstance(version, Ident):
                version = self.lookup(version.name)
            if not isinstance(version, str):
                return None
            return _comparator(expr.op, render_semver(version))
        if isinstance(expr, Logop):
            left, right = self.dnf(expr.left), self.dnf(expr.right)
            if expr.op == "&":
                return _and(left, right)
            if left is None or right is None:
                return None
            return left + right
        if isinstance(expr, Group):
            result = None
            for item in expr.values:
                result = _and(result, self.dnf(item))
            return result
        return None

    def toolchain_range(self, expr: Any, variable: str = "ocaml-version") -> Optional[List[List[str]]]:
        """Read opam 1.2 ``available: [ocaml-version >= "4.02"]`` style constraints."""
        if isinstance(expr, list):
            result = None
            for item in expr:
                result = _and(result, self.toolchain_range(item, variable))
            return result
        if isinstance(expr, Group):
            return self.toolchain_range(expr.values, variable)
        if isinstance(expr, Relop) and isinstance(expr.left, Ident) and expr.left.name == variable:
            if isinstance(expr.right, str):
                return _comparator(expr.op, render_semver(expr.right))
            return None
        if isinstance(expr, Logop):
            left = self.toolchain_range(expr.left, variable)
            right = self.toolchain_range(expr.right, variable)
            if expr.op == "&":
                return _and(left, right)
            if left is None or right is None:
                return None
            return left + right
        return None


def _is_command(item: Any) -> bool:
    if isinstance(item, Option):
        item = item.value
    return isinstance(item, list)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value not in ("", "false")
    return bool(value)


def _compare(op: str, left: str, right: str) -> Optional[bool]:
    cmp = opam_version.compare(left, right)
    return {
        "=": cmp == 0,
        "!=": cmp != 0,
        "<": cmp < 0,
        "<=": cmp <= 0,
        ">": cmp > 0,
        ">=": cmp >= 0,
    }.get(op)


def _flag_idents(filters: List[Any]) -> List[Ident]:
    flags: List[Ident] = []
    for item in filters:
        if isinstance(item, Ident) and item.name in _DEP_FLAGS:
            flags.append(item)
        elif isinstance(item, Logop) and item.op == "&":
            flags.extend(_flag_idents([item.left, item.right]))
        elif isinstance(item, Group):
            flags.extend(_flag_idents(item.values))
    return flags


def _comparator(op: str, version: str) -> Optional[List[List[str]]]:
    if op == "=":
        return [[version]]
    if op == "!=":
        return [[f"<{version}"], [f">{version}"]]
    if op in ("<", "<=", ">", ">="):
        return [[f"{op}{version}"]]
    return None


def _and(left: Optional[List[List[str]]], right: Optional[List[List[str]]]) -> Optional[List[List[str]]]:
    if left is None:
        return right
    if right is None:
        return left
    return [a + b for a in left for b in right]


def _split_range(range_str: Optional[str]) -> Optional[List[List[str]]]:
    if not range_str or range_str == "*":
        return None
    return [conj.split() for conj in range_str.split("||")]


def _join_range(dnf: Optional[List[List[str]]]) -> str:
    if not dnf:
        return "*"
    return " || ".join(" ".join(conj) for conj in dnf)


def scoped_name(name: str) -> str:
    return f"{_SCOPE_PREFIX}{name}"


def render_opam(name: str, version: str, opam: OpamFile) -> RenderedPackage:
    """Render a parsed opam file for ``name``/``version`` into a manifest."""
    renderer = _Renderer(name, version)

    depends = renderer.dependencies(opam.get("depends"))
    peer: Dict[str, str] = {}
    toolchain = Constants.PEER_TOOLCHAIN
    if toolchain in depends:
        peer[toolchain] = depends.pop(toolchain)
    available = renderer.toolchain_range(opam.get("available"))
    legacy = _prefix_range(renderer, opam.get("ocaml-version"))
    combined = _and(_and(_split_range(peer.get(toolchain)), available), legacy)
    if combined:
        peer[toolchain] = _join_range(combined)

    dependencies = {scoped_name(dep): rng for dep, rng in depends.items()}
    opt_dependencies = {
        scoped_name(dep): rng for dep, rng in renderer.dependencies(opam.get("depopts")).items()
    }

    patch_names = [
        p for p in (renderer.arg(v) for v in _as_list(opam.get("patches"))) if p is not None
    ]

    manifest = Manifest(
        name=scoped_name(name),
        version=version,
        dependencies=dependencies,
        peer_dependencies=peer,
        opt_dependencies=opt_dependencies,
        esy=EsyConfig(
            build=renderer.commands(opam.get("build")),
            install=renderer.commands(opam.get("install")),
        ),
        opam=OpamInfo(name=name, version=version),
    )

    url = None
    section = opam.section("url")
    if section is not None:
        url = _url_from_fields(section.fields)
    return RenderedPackage(manifest=manifest, patch_names=patch_names, url=url)


def _prefix_range(renderer: _Renderer, value: Any) -> Optional[List[List[str]]]:
    # opam 1.2 "ocaml-version: [>= "4.02"]" legacy field
    if value is None:
        return None
    result = None
    for item in _as_list(value):
        result = _and(result, renderer.dnf(item))
    return result


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _md5_from(checksum: Any) -> Optional[str]:
    for item in _as_list(checksum):
        if isinstance(item, Option):
            item = item.value
        if not isinstance(item, str):
            continue
        if "=" in item:
            kind, _, digest = item.partition("=")
            if kind.strip().lower() == "md5":
                return digest.strip()
        elif re.fullmatch(r"[0-9a-fA-F]{32}", item.strip()):
            return item.strip()
    return None


def _url_from_fields(fields: Dict[str, Any]) -> UrlDescriptor:
    url = None
    for key in _ARCHIVE_URL_KEYS:
        value = fields.get(key)
        if isinstance(value, Option):
            value = value.value
        if isinstance(value, str):
            url = value
            break
    if url is None:
        for key in _VCS_URL_KEYS:
            if key in fields:
                logger.debug("Ignoring %s source; only archives can be fetched", key)
                break
    elif url.startswith(("git+", "git://", "hg+", "darcs+")):
        logger.debug("Ignoring VCS source %s; only archives can be fetched", url)
        url = None
    return UrlDescriptor(url=url, checksum=_md5_from(fields.get("checksum")))


def parse_url_file(text: str, filename: str = "url") -> UrlDescriptor:
    """Parse an opam 1.2 ``url`` file into a URL and its md5 checksum."""
    parsed = parse_opam(text, filename)
    section = parsed.section("url")
    fields = section.fields if section is not None and not parsed.fields else parsed.fields
    return _url_from_fields(fields)

