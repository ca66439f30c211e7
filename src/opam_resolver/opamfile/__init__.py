"""Opam descriptor format: parsing and conversion to manifests."""

from .parser import OpamFile, parse_opam
from .render import RenderedPackage, UrlDescriptor, parse_url_file, render_opam

__all__ = [
    "OpamFile",
    "RenderedPackage",
    "UrlDescriptor",
    "parse_opam",
    "parse_url_file",
    "render_opam",
]
