"""Tests for the public resolve/fetch entry points."""

import asyncio
import json
import os

import pytest

from opam_resolver import (
    ErrorKind,
    FetchResult,
    OpamResolverError,
    fetch,
    is_opam_pattern,
    lookup_manifest,
    parse_resolution,
    resolve,
)
from opam_resolver.manifest import Manifest

from fakes import FakeHttp, FakeRunner, git_runner, make_manifest, write_tree, write_url_index

OPAM = 'opam-version: "2.0"\ndepends: ["ocaml" {>= "%s"}]\nbuild: [make]\n'


@pytest.fixture
def populated(config):
    """A cache folder holding both checkouts and the archive index."""
    write_tree(
        os.path.join(config.cache_folder, "opam-repository"),
        {
            "packages/foo/foo.1.0.0/opam": OPAM % "4.02",
            "packages/foo/foo.1.1.0-beta/opam": OPAM % "4.08",
            "packages/bar/bar.0.1.0/opam": 'opam-version: "2.0"\n',
        },
    )
    write_tree(
        os.path.join(config.cache_folder, "esy-opam-override"),
        {"packages/bar/package.json": json.dumps({"exportedEnv": {"BAR": {"val": "1"}}})},
    )
    write_url_index(config.urls_cache_path)
    config.prefer_offline = True
    return config


def run_resolve(config, *args, runner=None, http=None, **kwargs):
    return asyncio.run(
        resolve(*args, config=config, runner=runner or git_runner(), http=http or FakeHttp(), **kwargs)
    )


class TestPatterns:
    """Request parsing helpers."""

    def test_parse_resolution(self):
        assert parse_resolution("@opam/foo@^1.0.0") == ("foo", "^1.0.0")
        assert parse_resolution("@opam/foo") == ("foo", "*")

    def test_is_opam_pattern(self):
        assert is_opam_pattern("@opam/foo@^1.0.0")
        assert is_opam_pattern("@opam/foo@*")
        assert not is_opam_pattern("@opam/foo")
        assert not is_opam_pattern("@esy/foo@1.0.0")
        assert not is_opam_pattern("@opam/foo@not a range!!")


class TestResolve:
    """Resolution against a prepared cache folder."""

    def test_newest_by_opam_ordering(self, populated):
        manifest = run_resolve(populated, "foo", "*")
        assert manifest.version == "1.1.0-beta"
        assert manifest.name == "@opam/foo"
        assert manifest.remote == {
            "type": "opam",
            "registry": "npm",
            "hash": None,
            "reference": "@opam/foo@1.1.0-beta",
            "resolved": "@opam/foo@1.1.0-beta",
        }

    def test_peer_version_filters(self, populated):
        manifest = run_resolve(populated, "foo", None, peer_version="4.6.0")
        assert manifest.version == "1.0.0"

    def test_no_compatible_version(self, populated):
        with pytest.raises(OpamResolverError) as excinfo:
            run_resolve(populated, "foo", ">=2.0.0", request_path=["app"])
        assert excinfo.value.kind is ErrorKind.NO_COMPATIBLE_VERSION
        assert "@opam/foo@>=2.0.0" in str(excinfo.value)

    def test_unknown_package(self, populated):
        with pytest.raises(OpamResolverError) as excinfo:
            run_resolve(populated, "nope", "*")
        assert excinfo.value.kind is ErrorKind.PACKAGE_NOT_FOUND

    def test_overrides_are_applied(self, populated):
        manifest = run_resolve(populated, "bar", "latest")
        assert manifest.esy.exported_env["BAR"].value == "1"

    def test_locked_manifest_short_circuits(self, populated):
        runner = FakeRunner()
        locked = make_manifest(version="0.9.0")
        assert run_resolve(populated, "foo", "*", locked=locked, runner=runner) is locked
        as_dict = run_resolve(populated, "foo", "*", locked=locked.to_dict(), runner=runner)
        assert isinstance(as_dict, Manifest)
        assert as_dict.content_hash == locked.content_hash
        assert runner.calls == []

    def test_concurrent_resolves_share_one_initialization(self, populated):
        runner = git_runner()

        async def both():
            return await asyncio.gather(
                resolve("foo", "*", config=populated, runner=runner, http=FakeHttp()),
                resolve("bar", "*", config=populated, runner=runner, http=FakeHttp()),
            )

        foo, bar = asyncio.run(both())
        assert (foo.version, bar.version) == ("1.1.0-beta", "0.1.0")
        # one branch check per checkout
        assert len(runner.commands("git", "rev-parse", "--abbrev-ref")) == 2

    def test_online_refreshes_index(self, populated):
        populated.prefer_offline = False
        http = FakeHttp(head_headers={"last-modified": "Mon, 01 Jan 2024", "content-length": "10"})
        run_resolve(populated, "foo", "*", http=http)
        assert http.methods() == ["HEAD"]

    def test_lookup_manifest(self, populated):
        manifest = asyncio.run(
            lookup_manifest("@opam/foo", "1.0.0", populated, runner=git_runner(), http=FakeHttp())
        )
        assert manifest.version == "1.0.0"
        assert manifest.remote["reference"] == "@opam/foo@1.0.0"

    def test_peer_filter_error_names_scoped_package(self, populated):
        with pytest.raises(OpamResolverError) as excinfo:
            run_resolve(populated, "foo", "*", peer_version="3.0.0")
        assert excinfo.value.kind is ErrorKind.NO_COMPATIBLE_VERSION
        assert "@opam/foo@*" in str(excinfo.value)
        assert "(for ocaml@3.0.0)" in str(excinfo.value)


class TestFetch:
    """The fetch entry point."""

    def test_fetch_synthesized_package(self, tmp_path, config):
        manifest = make_manifest()
        result = asyncio.run(fetch(manifest, str(tmp_path / "dest"), config=config, runner=FakeRunner()))
        assert isinstance(result, FetchResult)
        assert result.content_hash == manifest.content_hash
        assert (tmp_path / "dest" / "package.json").is_file()
