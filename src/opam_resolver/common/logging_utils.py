"""Structured logging helpers shared by every module.

Modules log through ``logging.getLogger(__name__)`` and attach structured
fields with ``extra=extra_context(...)``. Nothing here configures handlers
unless ``configure_logging`` is called by the embedding application.
"""

from __future__ import annotations

import logging
import os
import re
import time
import urllib.parse
from typing import Any, Dict, Optional

from opam_resolver.constants import Constants

_SENSITIVE_PARAMS = {"token", "access_token", "auth", "key", "password", "secret", "signature"}
_TOKEN_RE = re.compile(r"(?i)\b(token|password|secret)=([^&\s]+)")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, honoring OPAM_RESOLVER_LOG_LEVEL."""
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    numeric = getattr(logging, name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric, format=Constants.LOG_FORMAT)
    root.setLevel(numeric)


def is_debug_enabled(logger: logging.Logger) -> bool:
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping fields that are None."""
    return {k: v for k, v in fields.items() if v is not None}


def redact(text: str) -> str:
    """Mask credential-looking ``key=value`` pairs in free text."""
    return _TOKEN_RE.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)


def safe_url(url: str) -> str:
    """Return the URL with userinfo removed and sensitive query values masked."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    masked = [
        (k, "[REDACTED]" if k.lower() in _SENSITIVE_PARAMS else v) for k, v in query
    ]
    return urllib.parse.urlunsplit(
        (parts.scheme, netloc, parts.path, urllib.parse.urlencode(masked), parts.fragment)
    )


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
