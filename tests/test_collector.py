"""Tests for converting version directories into manifests."""

import asyncio
import json

import pytest

from opam_resolver.errors import ErrorKind, OpamResolverError
from opam_resolver.repository.checkout import RepositoryCheckout
from opam_resolver.repository.collector import ManifestCollector, version_from_spec
from opam_resolver.repository.override import load_overrides
from opam_resolver.repository.urls import ArchiveEntry, URLIndex

from fakes import write_tree

OPAM_WITH_URL = """
opam-version: "2.0"
depends: ["ocaml" {>= "4.02"} "dune" {build}]
build: [["dune" "build" "-p" name]]
patches: ["fix.patch"]
url {
  src: "https://example.com/foo-1.0.0.tar.gz"
  checksum: "md5=0123456789abcdef0123456789abcdef"
}
"""

OPAM_LEGACY = """
opam-version: "1.2"
build: [make]
"""

URL_FILE = """
archive: "https://example.com/foo-1.1.0.tbz"
checksum: "fedcba9876543210fedcba9876543210"
"""

INDEX_CHECKSUM = "99999999999999999999999999999999"


def opam_repo(root):
    write_tree(
        root,
        {
            "packages/foo/foo.1.0.0/opam": OPAM_WITH_URL,
            "packages/foo/foo.1.0.0/files/fix.patch": "--- a/x\n+++ b/x\n",
            "packages/foo/foo.1.0.0/files/foo.install": "lib: []\n",
            "packages/foo/foo.1.1.0/opam": OPAM_LEGACY,
            "packages/foo/foo.1.1.0/url": URL_FILE,
            "packages/foo/foo.2.0.0/opam": OPAM_LEGACY,
            "packages/foo/foo.2.0.0/url": URL_FILE,
            "packages/broken/broken.1.0.0/opam": "depends: [",
        },
    )
    return str(root)


def make_checkout(tmp_path, overrides=None):
    repo = opam_repo(tmp_path / "repo")
    override_root = tmp_path / "override"
    write_tree(override_root, overrides or {})
    store = asyncio.run(load_overrides(str(override_root)))
    index = URLIndex(
        cache_key="k",
        archives={
            "foo": {
                "2.0.0": ArchiveEntry(
                    url="https://opam.ocaml.org/archives/foo.2.0.0+opam.tar.gz",
                    checksum=INDEX_CHECKSUM,
                )
            }
        },
    )
    return RepositoryCheckout(checkout_path=repo, overrides=store, url_index=index)


def collect(checkout, name="foo"):
    return asyncio.run(ManifestCollector(checkout).get_manifest_collection(name))


class TestManifestCollector:
    """Per-version conversion."""

    def test_versions_are_keyed_without_name_prefix(self, tmp_path):
        collection = collect(make_checkout(tmp_path))
        assert collection.name == "foo"
        assert sorted(collection.versions) == ["1.0.0", "1.1.0", "2.0.0"]
        assert version_from_spec("foo.1.0.0~beta") == "1.0.0~beta"

    def test_embedded_url_patches_and_files(self, tmp_path):
        manifest = collect(make_checkout(tmp_path)).versions["1.0.0"]
        assert manifest.opam.url == "https://example.com/foo-1.0.0.tar.gz"
        assert manifest.opam.checksum == "0123456789abcdef0123456789abcdef"
        assert [p.name for p in manifest.opam.patches] == ["fix.patch"]
        assert [f.name for f in manifest.opam.files] == ["foo.install"]
        assert manifest.peer_dependencies == {"ocaml": ">=4.2.0"}
        assert manifest.opam.prebuilt is False

    def test_url_file(self, tmp_path):
        manifest = collect(make_checkout(tmp_path)).versions["1.1.0"]
        assert manifest.opam.url == "https://example.com/foo-1.1.0.tbz"
        assert manifest.opam.checksum == "fedcba9876543210fedcba9876543210"
        assert manifest.esy.build == [["make"]]

    def test_archive_index_wins_and_marks_prebuilt(self, tmp_path):
        manifest = collect(make_checkout(tmp_path)).versions["2.0.0"]
        assert manifest.opam.url == "https://opam.ocaml.org/archives/foo.2.0.0+opam.tar.gz"
        assert manifest.opam.checksum == INDEX_CHECKSUM
        assert manifest.opam.prebuilt is True

    def test_override_source_beats_index(self, tmp_path):
        overrides = {
            "packages/foo.2.x/package.json": json.dumps(
                {"opam": {"url": "https://mirror.example.com/foo.tgz", "checksum": None}}
            )
        }
        manifest = collect(make_checkout(tmp_path, overrides)).versions["2.0.0"]
        assert manifest.opam.url == "https://mirror.example.com/foo.tgz"
        assert manifest.opam.prebuilt is False

    def test_content_hash_reflects_overrides(self, tmp_path):
        plain = collect(make_checkout(tmp_path / "a")).versions["1.1.0"]
        overridden = collect(
            make_checkout(tmp_path / "b", {"packages/foo.1.x/package.json": json.dumps({"build": "true"})})
        ).versions["1.1.0"]
        assert plain.content_hash == plain.compute_content_hash()
        assert overridden.esy.build == ["true"]
        assert overridden.content_hash != plain.content_hash

    def test_unknown_package(self, tmp_path):
        with pytest.raises(OpamResolverError) as excinfo:
            collect(make_checkout(tmp_path), "nope")
        assert excinfo.value.kind is ErrorKind.PACKAGE_NOT_FOUND
        assert "@opam/nope" in str(excinfo.value)

    def test_broken_descriptor(self, tmp_path):
        with pytest.raises(OpamResolverError) as excinfo:
            collect(make_checkout(tmp_path), "broken")
        assert excinfo.value.kind is ErrorKind.INVALID_METADATA

    def test_single_version_lookup(self, tmp_path):
        collector = ManifestCollector(make_checkout(tmp_path))
        manifest = asyncio.run(collector.get_manifest("foo", "1.1.0"))
        assert manifest.version == "1.1.0"
        assert asyncio.run(collector.get_manifest("foo", "9.9.9")) is None

    def test_attachments_are_read_verbatim(self, tmp_path):
        checkout = make_checkout(tmp_path)
        files_dir = tmp_path / "repo" / "packages" / "foo" / "foo.1.0.0" / "files"
        (files_dir / "fix.patch").write_bytes(b"--- a/x\r\n+++ b/x\r\n")
        (files_dir / "foo.install").write_bytes(b"# caf\xe9\n")
        manifest = collect(checkout).versions["1.0.0"]
        (patch,) = manifest.opam.patches
        assert patch.content == "--- a/x\r\n+++ b/x\r\n"
        (extra,) = manifest.opam.files
        assert extra.content.encode("utf-8", "surrogateescape") == b"# caf\xe9\n"

    def test_undecodable_opam_file(self, tmp_path):
        checkout = make_checkout(tmp_path)
        (tmp_path / "repo" / "packages" / "foo" / "foo.1.0.0" / "opam").write_bytes(b'synopsis: "\xe9"\n')
        with pytest.raises(OpamResolverError) as excinfo:
            collect(checkout)
        assert excinfo.value.kind is ErrorKind.INVALID_METADATA
