"""Tests for the prebuilt archive index and its cache."""

import asyncio
import json

import pytest

from opam_resolver.errors import ErrorKind, OpamResolverError
from opam_resolver.repository.urls import (
    URLIndex,
    URLIndexCache,
    index_cache_key,
    parse_archive_line,
    parse_archives,
    resolve,
)

from fakes import FakeHttp, write_url_index

INDEX_URL = "https://example.com/urls.txt"
URLS_TXT = (
    "archives/foo.1.2.3+opam.tar.gz abcdef0123456789abcdef0123456789 0o664\n"
    "archives/foo.1.3.0+opam.tar.gz 11111111111111111111111111111111 0o664\n"
    "archives/bar.0.1~beta+opam.tar.gz 22222222222222222222222222222222 0o664\n"
    "packages/foo/foo.1.2.3/opam 33333333333333333333333333333333 0o664\n"
    "garbage line\n"
)


class TestParsing:
    """Line format of urls.txt."""

    def test_archive_line(self):
        archives = parse_archives(URLS_TXT)
        entry = archives["foo"]["1.2.3"]
        assert entry.url == "https://opam.ocaml.org/archives/foo.1.2.3+opam.tar.gz"
        assert entry.checksum == "abcdef0123456789abcdef0123456789"

    def test_non_archive_lines_are_ignored(self):
        archives = parse_archives(URLS_TXT)
        assert sorted(archives) == ["bar", "foo"]
        assert sorted(archives["foo"]) == ["1.2.3", "1.3.0"]
        assert parse_archive_line("packages/foo/foo.1.2.3/opam abc 0o664") is None
        assert parse_archive_line("") is None

    def test_version_keeps_tilde(self):
        assert parse_archive_line(
            "archives/bar.0.1~beta+opam.tar.gz 22222222222222222222222222222222 0o664"
        ) == ("bar", "0.1~beta", "22222222222222222222222222222222")

    def test_resolve_is_a_pure_lookup(self):
        index = URLIndex(cache_key="k", archives=parse_archives(URLS_TXT))
        assert resolve(index, "foo", "1.3.0").checksum == "11111111111111111111111111111111"
        assert resolve(index, "foo", "9.9.9") is None
        assert resolve(index, "nope", "1.0") is None

    def test_cache_key(self):
        headers = {"Last-Modified": "Tue, 02 Jan 2024", "Content-Length": "1234"}
        assert index_cache_key(headers) == "Tue, 02 Jan 2024__1234"


class TestURLIndexCache:
    """Refetch policy driven by the HEAD probe."""

    HEADERS = {"last-modified": "Tue, 02 Jan 2024", "content-length": "1234"}

    def test_fetches_and_caches_when_missing(self, tmp_path):
        cache_path = tmp_path / "opam-urls"
        http = FakeHttp(text=URLS_TXT, text_headers=self.HEADERS)
        index = asyncio.run(URLIndexCache(http, INDEX_URL).fetch_index(str(cache_path)))
        assert http.methods() == ["GET"]
        assert index.cache_key == "Tue, 02 Jan 2024__1234"
        stored = json.loads(cache_path.read_text())
        assert stored["cacheKey"] == index.cache_key
        assert stored["archives"]["foo"]["1.2.3"]["checksum"] == "abcdef0123456789abcdef0123456789"

    def test_unchanged_upstream_uses_cache(self, tmp_path):
        cache_path = tmp_path / "opam-urls"
        write_url_index(
            cache_path,
            {"foo": {"1.0.0": {"url": "u", "checksum": "c"}}},
            cache_key="Tue, 02 Jan 2024__1234",
        )
        http = FakeHttp(head_headers=self.HEADERS)
        index = asyncio.run(URLIndexCache(http, INDEX_URL).fetch_index(str(cache_path)))
        assert http.methods() == ["HEAD"]
        assert resolve(index, "foo", "1.0.0").url == "u"

    def test_changed_upstream_refetches(self, tmp_path):
        cache_path = tmp_path / "opam-urls"
        write_url_index(cache_path, {}, cache_key="old__1")
        http = FakeHttp(head_headers=self.HEADERS, text=URLS_TXT, text_headers=self.HEADERS)
        index = asyncio.run(URLIndexCache(http, INDEX_URL).fetch_index(str(cache_path)))
        assert http.methods() == ["HEAD", "GET"]
        assert "foo" in index.archives

    def test_prefer_offline_trusts_cache(self, tmp_path):
        cache_path = tmp_path / "opam-urls"
        write_url_index(cache_path, {}, cache_key="old__1")
        http = FakeHttp()
        asyncio.run(URLIndexCache(http, INDEX_URL, prefer_offline=True).fetch_index(str(cache_path)))
        assert http.calls == []

    def test_offline_without_cache_fails(self, tmp_path):
        http = FakeHttp()
        with pytest.raises(OpamResolverError) as excinfo:
            asyncio.run(
                URLIndexCache(http, INDEX_URL, offline=True).fetch_index(str(tmp_path / "opam-urls"))
            )
        assert excinfo.value.kind is ErrorKind.OFFLINE
        assert http.calls == []
