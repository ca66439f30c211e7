"""Index of prebuilt opam archives (``urls.txt``) with an on-disk cache.

Each relevant index line looks like::

    archives/0install.2.10+opam.tar.gz c65d2d26792ad4d51e0c88ae5d41cc5a 0o664

The cache file is trusted as long as a HEAD probe of the index reports the
same ``Last-Modified``/``Content-Length`` pair it was built from.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from opam_resolver.common import fs
from opam_resolver.common.http_client import HttpClient
from opam_resolver.common.logging_utils import safe_url
from opam_resolver.constants import Constants
from opam_resolver.errors import offline_error

logger = logging.getLogger(__name__)

_ARCHIVE_LINE_RE = re.compile(r"^archives/([^.]+)\.(.+)\+opam\.tar\.gz\s+([a-fA-F0-9]+)(?:\s|$)")


@dataclass
class ArchiveEntry:
    url: str
    checksum: str


@dataclass
class URLIndex:
    cache_key: str
    archives: Dict[str, Dict[str, ArchiveEntry]] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "cacheKey": self.cache_key,
                "archives": {
                    name: {
                        version: {"url": e.url, "checksum": e.checksum}
                        for version, e in versions.items()
                    }
                    for name, versions in self.archives.items()
                },
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "URLIndex":
        data = json.loads(text)
        archives = {
            name: {
                version: ArchiveEntry(url=e["url"], checksum=e["checksum"])
                for version, e in versions.items()
            }
            for name, versions in (data.get("archives") or {}).items()
        }
        return cls(cache_key=data.get("cacheKey", ""), archives=archives)


def archive_url(name: str, version: str, base_url: str = Constants.ARCHIVE_BASE_URL) -> str:
    return f"{base_url}{name}.{version}+opam.tar.gz"


def parse_archive_line(line: str) -> Optional[tuple]:
    """Return ``(name, version, checksum)`` for an archive line, else None."""
    if not line.startswith("archives/"):
        return None
    m = _ARCHIVE_LINE_RE.match(line.strip())
    if m is None:
        return None
    return m.group(1), m.group(2), m.group(3)


def parse_archives(data: str) -> Dict[str, Dict[str, ArchiveEntry]]:
    archives: Dict[str, Dict[str, ArchiveEntry]] = {}
    for line in data.splitlines():
        parsed = parse_archive_line(line)
        if parsed is None:
            continue
        name, version, checksum = parsed
        archives.setdefault(name, {})[version] = ArchiveEntry(
            url=archive_url(name, version), checksum=checksum
        )
    return archives


def index_cache_key(headers: Mapping[str, str]) -> str:
    lower = {k.lower(): v for k, v in headers.items()}
    return f"{lower.get('last-modified')}__{lower.get('content-length')}"


def resolve(index: URLIndex, name: str, version: str) -> Optional[ArchiveEntry]:
    return index.archives.get(name, {}).get(version)


class URLIndexCache:
    """Fetches ``urls.txt`` and keeps a parsed copy next to the other caches."""

    def __init__(
        self,
        http: HttpClient,
        index_url: str = Constants.ARCHIVE_INDEX_URL,
        offline: bool = False,
        prefer_offline: bool = False,
    ) -> None:
        self.http = http
        self.index_url = index_url
        self.offline = offline
        self.prefer_offline = prefer_offline

    async def fetch_index(self, cache_path: str) -> URLIndex:
        """Return the index, refetching only when the upstream changed."""
        if not await fs.exists(cache_path):
            if self.offline:
                raise offline_error(f"fetch {safe_url(self.index_url)}")
            return await self._fetch_and_cache(cache_path)

        index = URLIndex.from_json(await fs.read_text(cache_path))
        if self.offline or self.prefer_offline:
            return index
        headers = await self.http.head(self.index_url)
        if index_cache_key(headers) != index.cache_key:
            logger.debug("Archive index changed upstream; refetching")
            return await self._fetch_and_cache(cache_path)
        return index

    async def _fetch_and_cache(self, cache_path: str) -> URLIndex:
        logger.info("Fetching OPAM URL index...")
        headers, body = await self.http.get_text(self.index_url)
        index = URLIndex(cache_key=index_cache_key(headers), archives=parse_archives(body))
        await fs.write_atomic(cache_path, index.to_json())
        return index
