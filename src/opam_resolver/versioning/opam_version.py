"""Opam version ordering.

Opam orders versions the Debian way: a version is a sequence of alternating
non-digit and digit chunks. Non-digit chunks are compared character by
character where ``~`` sorts before everything (even the end of the string),
letters sort before other symbols; digit chunks compare numerically.

    1.0~beta < 1.0 < 1.0a < 1.0.1
"""

from __future__ import annotations

import functools
from typing import Callable, Iterable, List

_DIGITS = "0123456789"
_LETTERS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _order(char: str) -> int:
    if char == "~":
        return -1
    if char in _DIGITS:
        return 0
    if char in _LETTERS:
        return ord(char)
    return ord(char) + 256


def _compare_non_digits(a: str, b: str) -> int:
    for i in range(max(len(a), len(b))):
        ca = _order(a[i]) if i < len(a) else 0
        cb = _order(b[i]) if i < len(b) else 0
        if ca != cb:
            return -1 if ca < cb else 1
    return 0


def _take(s: str, start: int, digits: bool) -> int:
    end = start
    while end < len(s) and (s[end] in _DIGITS) == digits:
        end += 1
    return end


def compare(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` sorts before, equal to or after ``b``."""
    if a == b:
        return 0
    i = j = 0
    while i < len(a) or j < len(b):
        ni, nj = _take(a, i, False), _take(b, j, False)
        result = _compare_non_digits(a[i:ni], b[j:nj])
        if result:
            return result
        i, j = ni, nj

        ni, nj = _take(a, i, True), _take(b, j, True)
        na = int(a[i:ni]) if ni > i else 0
        nb = int(b[j:nj]) if nj > j else 0
        if na != nb:
            return -1 if na < nb else 1
        i, j = ni, nj
    return 0


sort_key: Callable[[str], object] = functools.cmp_to_key(compare)


def sort_descending(versions: Iterable[str]) -> List[str]:
    """Newest first, by opam ordering."""
    return sorted(versions, key=sort_key, reverse=True)
