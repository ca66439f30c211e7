"""Error taxonomy for resolution and fetching.

A single exception type carries an ``ErrorKind`` tag plus an optional
structured payload, so callers branch on ``err.kind`` instead of walking a
class hierarchy.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorKind(Enum):
    """Kinds of failure surfaced by the resolver and the fetcher."""

    OFFLINE = "offline"
    PACKAGE_NOT_FOUND = "package_not_found"
    NO_COMPATIBLE_VERSION = "no_compatible_version"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    PROCESS_EXECUTION = "process_execution"
    REQUEST_FAILED = "request_failed"
    INVALID_METADATA = "invalid_metadata"


class OpamResolverError(Exception):
    """Failure raised anywhere in the opam resolution/fetch pipeline.

    Args:
        kind: The failure variant.
        message: Human-readable description.
        **payload: Structured details (``code``, ``stderr``, ``response_code``,
            ``path``, ``request_path`` ...).
    """

    def __init__(self, kind: ErrorKind, message: str, **payload: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.payload: Dict[str, Any] = {k: v for k, v in payload.items() if v is not None}

    def __getattr__(self, name: str) -> Any:
        payload = self.__dict__.get("payload", {})
        if name in payload:
            return payload[name]
        raise AttributeError(name)

    @property
    def is_security_error(self) -> bool:
        """Integrity failures must never be retried or downgraded."""
        return self.kind is ErrorKind.CHECKSUM_MISMATCH

    def __repr__(self) -> str:
        return f"OpamResolverError({self.kind.name}, {self.message!r})"


def offline_error(action: str) -> OpamResolverError:
    return OpamResolverError(
        ErrorKind.OFFLINE,
        f"Network access required to {action}, but offline mode is enabled",
    )


def package_not_found(name: str) -> OpamResolverError:
    return OpamResolverError(ErrorKind.PACKAGE_NOT_FOUND, f"No package found: {name}")


def no_compatible_version(
    name: str,
    version_range: str,
    peer_version: Optional[str] = None,
    request_path: Optional[Sequence[str]] = None,
) -> OpamResolverError:
    """Build the error for a range (optionally peer-filtered) with no match."""
    message = f"No compatible version found: {name}@{version_range}"
    if peer_version is not None:
        message += f" (for ocaml@{peer_version})"
    path: Optional[List[str]] = list(request_path) if request_path else None
    if path:
        message += f" required by {' > '.join(path)}"
    return OpamResolverError(
        ErrorKind.NO_COMPATIBLE_VERSION,
        message,
        request_path=path,
        peer_version=peer_version,
    )


def checksum_mismatch(url: str, expected: str, actual: str) -> OpamResolverError:
    return OpamResolverError(
        ErrorKind.CHECKSUM_MISMATCH,
        f"Incorrect md5sum for {url} (expected {expected}, got {actual})",
        expected=expected,
        actual=actual,
    )


def process_failed(args: Sequence[str], code: Optional[int], stderr: str) -> OpamResolverError:
    command = " ".join(args)
    return OpamResolverError(
        ErrorKind.PROCESS_EXECUTION,
        f"Command failed with exit code {code}: {command}\n{stderr.strip()}".rstrip(),
        code=code,
        stderr=stderr,
        process=args[0] if args else None,
    )


def request_failed(url: str, status: int, reason: str = "") -> OpamResolverError:
    detail = f"{status} {reason}".strip()
    return OpamResolverError(
        ErrorKind.REQUEST_FAILED,
        f"Request failed: {detail} ({url})",
        response_code=status,
    )


def invalid_metadata(path: str, detail: str) -> OpamResolverError:
    return OpamResolverError(ErrorKind.INVALID_METADATA, f"{path}: {detail}", path=path)
