"""Archive formats: unpack upstream sources, pack and unpack canonical tarballs.

The canonical tarball is a gzip-compressed tar whose entries all live under
a single ``package/`` prefix, with ownership stripped so the bytes do not
depend on the host that produced them.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import zipfile
from typing import Optional

from opam_resolver.constants import Constants

logger = logging.getLogger(__name__)

_TAR_MODES = {"gzip": "r:gz", "bzip": "r:bz2", "xz": "r:xz"}


def tarball_format_from_filename(filename: str) -> str:
    """Guess the archive format from a URL or file name; gzip when unsure."""
    if filename.endswith((".tgz", ".tar.gz")):
        return "gzip"
    if filename.endswith((".tar.bz", ".tar.bz2", ".tbz")):
        return "bzip"
    if filename.endswith(".zip"):
        return "zip"
    if filename.endswith(".xz"):
        return "xz"
    return "gzip"


def safe_join(root: str, name: str) -> Optional[str]:
    """Resolve an archive member name under ``root``; None if it escapes."""
    if not name or os.path.isabs(name):
        return None
    target = os.path.normpath(os.path.join(root, name))
    base = os.path.normpath(root)
    if target != base and not target.startswith(base + os.sep):
        return None
    return target


def _strip_components(name: str, count: int) -> str:
    parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
    return "/".join(parts[count:])


def _extract_members(tar: tarfile.TarFile, dest: str, strip: int = 0, normalize_modes: bool = False) -> None:
    os.makedirs(dest, exist_ok=True)
    for member in tar.getmembers():
        name = _strip_components(member.name, strip)
        if not name:
            continue
        target = safe_join(dest, name)
        if target is None:
            logger.warning("Skipping archive member outside destination: %s", member.name)
            continue

        if member.isdir():
            os.makedirs(target, exist_ok=True)
            mode = member.mode | Constants.DIR_MODE if normalize_modes else member.mode
            os.chmod(target, mode & 0o7777)
        elif member.isfile():
            os.makedirs(os.path.dirname(target), exist_ok=True)
            source = tar.extractfile(member)
            if source is None:
                continue
            with source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            mode = member.mode | Constants.FILE_MODE if normalize_modes else member.mode
            os.chmod(target, mode & 0o7777)
        elif member.issym():
            resolved = os.path.normpath(os.path.join(os.path.dirname(target), member.linkname))
            if os.path.isabs(member.linkname) or safe_join(dest, os.path.relpath(resolved, dest)) is None:
                logger.warning("Skipping symlink pointing outside destination: %s", member.name)
                continue
            os.makedirs(os.path.dirname(target), exist_ok=True)
            if os.path.lexists(target):
                os.unlink(target)
            os.symlink(member.linkname, target)
        elif member.islnk():
            source_path = safe_join(dest, _strip_components(member.linkname, strip))
            if source_path is None or not os.path.isfile(source_path):
                logger.warning("Skipping hard link with missing target: %s", member.name)
                continue
            shutil.copy2(source_path, target)
        else:
            logger.debug("Skipping special archive member %s", member.name)


def _extract_zip(filename: str, dest: str) -> None:
    with zipfile.ZipFile(filename) as archive:
        for info in archive.infolist():
            target = safe_join(dest, info.filename)
            if target is None:
                logger.warning("Skipping archive member outside destination: %s", info.filename)
                continue
            if info.is_dir():
                os.makedirs(target, exist_ok=True)
                continue
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with archive.open(info) as source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            mode = (info.external_attr >> 16) & 0o7777
            if mode:
                os.chmod(target, mode)


def unpack_archive(filename: str, dest: str, archive_format: str) -> None:
    """Unpack a downloaded upstream archive into ``dest`` as is."""
    if archive_format == "zip":
        _extract_zip(filename, dest)
        return
    with tarfile.open(filename, _TAR_MODES.get(archive_format, "r:gz")) as tar:
        _extract_members(tar, dest)


def source_root(staging: str) -> str:
    """The directory holding the sources after unpacking into ``staging``.

    Upstream archives usually wrap everything in one top-level directory;
    when they do, that directory is the root, otherwise ``staging`` is.
    """
    entries = sorted(os.listdir(staging))
    if len(entries) == 1 and os.path.isdir(os.path.join(staging, entries[0])):
        return os.path.join(staging, entries[0])
    return staging


def _reset_ownership(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def pack_directory(directory: str, tarball_path: str) -> None:
    """Pack ``directory`` into a canonical tarball at ``tarball_path``."""
    os.makedirs(os.path.dirname(tarball_path) or ".", exist_ok=True)
    with tarfile.open(tarball_path, "w:gz") as tar:
        tar.add(directory, arcname=Constants.TARBALL_PREFIX, filter=_reset_ownership)


def unpack_tarball(tarball_path: str, directory: str) -> None:
    """Unpack a canonical tarball, dropping its top-level prefix.

    Directories end up at least ``0o755`` and files at least ``0o644``;
    ownership is left to the current user.
    """
    with tarfile.open(tarball_path, "r:*") as tar:
        _extract_members(tar, directory, strip=1, normalize_modes=True)
