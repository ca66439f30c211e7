"""Async filesystem helpers.

Blocking calls are pushed to a worker thread with ``asyncio.to_thread`` so
every read/write is a suspension point for the event loop.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union

PathLike = Union[str, "os.PathLike[str]"]


def atomic_write(path: PathLike, content: str) -> None:
    """Write a file by renaming a sibling temp file over it."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(target))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


async def exists(path: PathLike) -> bool:
    return await asyncio.to_thread(os.path.exists, path)


async def is_dir(path: PathLike) -> bool:
    return await asyncio.to_thread(os.path.isdir, path)


def _read_text(path: PathLike) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


async def read_text(path: PathLike) -> str:
    return await asyncio.to_thread(_read_text, path)


def _write_text(path: PathLike, content: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


async def write_text(path: PathLike, content: str) -> None:
    await asyncio.to_thread(_write_text, path, content)


# Patches and extra files: line endings are kept and undecodable bytes
# survive a read/write round trip as lone surrogates.
def _read_blob(path: PathLike) -> str:
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


async def read_blob(path: PathLike) -> str:
    return await asyncio.to_thread(_read_blob, path)


def _write_blob(path: PathLike, content: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.write(content)


async def write_blob(path: PathLike, content: str) -> None:
    await asyncio.to_thread(_write_blob, path, content)


async def write_atomic(path: PathLike, content: str) -> None:
    await asyncio.to_thread(atomic_write, path, content)


async def mkdirp(path: PathLike) -> None:
    await asyncio.to_thread(os.makedirs, path, exist_ok=True)


async def readdir(path: PathLike) -> List[str]:
    """List entry names, sorted so callers see a stable order."""
    names = await asyncio.to_thread(os.listdir, path)
    return sorted(names)


async def rename(src: PathLike, dest: PathLike) -> None:
    # shutil.move also handles temp dirs living on another filesystem.
    await asyncio.to_thread(shutil.move, str(src), str(dest))


async def unlink(path: PathLike) -> None:
    await asyncio.to_thread(os.unlink, path)


def _copy(src: PathLike, dest: PathLike) -> None:
    Path(dest).parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)


async def copy(src: PathLike, dest: PathLike) -> None:
    await asyncio.to_thread(_copy, src, dest)


async def rmtree(path: PathLike, ignore_errors: bool = True) -> None:
    await asyncio.to_thread(shutil.rmtree, path, ignore_errors)


async def make_temp_dir(prefix: str, parent: Optional[PathLike] = None) -> str:
    if parent is not None:
        await mkdirp(parent)
    return await asyncio.to_thread(
        tempfile.mkdtemp, None, prefix, str(parent) if parent is not None else None
    )
