"""Fakes for the process and HTTP seams, plus small fixture builders."""

import hashlib
import json
import os

from opam_resolver.errors import request_failed
from opam_resolver.manifest import Manifest, OpamInfo


class FakeRunner:
    """Records every command; answers by longest matching argv prefix."""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = dict(responses or {})

    async def run(self, args, cwd=None):
        args = [str(a) for a in args]
        self.calls.append((args, cwd))
        best = None
        for prefix, result in self.responses.items():
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return ""
        result = self.responses[best]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(args, cwd)
        return result

    def commands(self, *prefix):
        return [args for args, _ in self.calls if tuple(args[: len(prefix)]) == prefix]


def git_runner(branch="master", local_commit="abc123", remote_commit="abc123"):
    return FakeRunner(
        {
            ("git", "rev-parse", "--abbrev-ref", "HEAD"): f"{branch}\n",
            ("git", "rev-parse", "HEAD"): f"{local_commit}\n",
            ("git", "ls-remote"): f"{remote_commit}\trefs/heads/master\n",
        }
    )


class FakeHttp:
    """Stand-in for HttpClient serving canned headers, bodies and payloads."""

    def __init__(self, head_headers=None, text="", text_headers=None, payloads=None):
        self.head_headers = head_headers or {}
        self.text = text
        self.text_headers = text_headers or {}
        self.payloads = payloads or {}
        self.calls = []

    async def head(self, url):
        self.calls.append(("HEAD", url))
        return dict(self.head_headers)

    async def get_text(self, url):
        self.calls.append(("GET", url))
        return dict(self.text_headers), self.text

    async def download(self, url, dest, hasher=None):
        self.calls.append(("DOWNLOAD", url))
        if url not in self.payloads:
            raise request_failed(url, 404, "Not Found")
        data = self.payloads[url]
        with open(dest, "wb") as f:
            f.write(data)
        if hasher is not None:
            hasher.update(data)
        return len(data)

    async def stop(self):
        pass

    def methods(self):
        return [method for method, _ in self.calls]


def md5_hex(data):
    return hashlib.md5(data).hexdigest()


def make_manifest(name="foo", version="1.0.0", **opam):
    manifest = Manifest(
        name=f"@opam/{name}",
        version=version,
        opam=OpamInfo(name=name, version=version, **opam),
    )
    manifest.refresh_content_hash()
    return manifest


def write_tree(root, files):
    """Create ``files`` ({relative path: text}) below ``root``."""
    for rel, content in files.items():
        path = os.path.join(str(root), rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)


def write_url_index(path, archives=None, cache_key="Mon, 01 Jan 2024__10"):
    payload = {"cacheKey": cache_key, "archives": archives or {}}
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(str(path), "w", encoding="utf-8") as f:
        json.dump(payload, f)
