"""Resolve and fetch ``@opam/*`` packages from a git-mirrored opam repository."""

from opam_resolver.config import OpamConfig
from opam_resolver.errors import ErrorKind, OpamResolverError
from opam_resolver.fetchers.opam_fetcher import FetchResult
from opam_resolver.manifest import Manifest
from opam_resolver.resolver import fetch, is_opam_pattern, lookup_manifest, parse_resolution, resolve

__all__ = [
    "ErrorKind",
    "FetchResult",
    "Manifest",
    "OpamConfig",
    "OpamResolverError",
    "fetch",
    "is_opam_pattern",
    "lookup_manifest",
    "parse_resolution",
    "resolve",
]
