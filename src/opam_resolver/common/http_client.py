"""Shared async HTTP client used by the URL index cache and the fetcher.

Wraps a lazily started ``aiohttp.ClientSession`` and turns non-2xx
responses into ``REQUEST_FAILED`` errors so callers never inspect status
codes themselves.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from opam_resolver.common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from opam_resolver.constants import Constants
from opam_resolver.errors import request_failed

logger = logging.getLogger(__name__)


class HttpClient:
    """Minimal GET/HEAD/download client over aiohttp."""

    def __init__(self, timeout: int = Constants.REQUEST_TIMEOUT) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None):
        if self._session is None:
            await self.start()
        assert self._session is not None
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action=method,
                    target=safe_url(url),
                ),
            )
        response = await self._session.request(
            method, url, headers=headers or {}, allow_redirects=True
        )
        if response.status >= 400:
            reason = getattr(response, "reason", "") or ""
            response.release()
            logger.warning(
                "HTTP non-2xx response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action=method,
                    outcome="error",
                    status_code=response.status,
                    target=safe_url(url),
                ),
            )
            raise request_failed(safe_url(url), response.status, reason)
        return response

    async def head(self, url: str) -> Dict[str, str]:
        """Return response headers (lower-cased keys) of a HEAD request."""
        response = await self._request("HEAD", url)
        try:
            return _lower_headers(response.headers)
        finally:
            response.release()

    async def get_text(self, url: str) -> Tuple[Dict[str, str], str]:
        """GET ``url`` and return ``(headers, body_text)``."""
        with Timer() as timer:
            response = await self._request("GET", url)
            try:
                text = await response.text()
                headers = _lower_headers(response.headers)
            finally:
                response.release()
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response ok",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    outcome="success",
                    duration_ms=timer.duration_ms(),
                    target=safe_url(url),
                ),
            )
        return headers, text

    async def download(self, url: str, dest: str, hasher: Any = None) -> int:
        """Stream ``url`` into ``dest``, feeding every chunk to ``hasher``.

        Returns:
            Number of bytes written.
        """
        headers = {
            "Accept-Encoding": "gzip",
            "Accept": "application/octet-stream",
        }
        written = 0
        response = await self._request("GET", url, headers=headers)
        try:
            out = await asyncio.to_thread(open, dest, "wb")
            try:
                async for chunk in response.content.iter_chunked(Constants.DOWNLOAD_CHUNK_SIZE):
                    if hasher is not None:
                        hasher.update(chunk)
                    await asyncio.to_thread(out.write, chunk)
                    written += len(chunk)
            finally:
                await asyncio.to_thread(out.close)
        finally:
            response.release()
        return written

    async def __aenter__(self) -> "HttpClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


def _lower_headers(headers: Any) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in headers.items()}
