"""
Media scanner - lists candidate media files under a root, or re-stats a set of paths.

Filesystem traversal runs in a worker thread (`asyncio.to_thread`) so the event
loop is never blocked by a large directory walk.
"""
from __future__ import annotations

import asyncio
import mimetypes
import os
from collections.abc import Iterable, Iterator
from typing import Optional

from ...path_utils import dedupe_paths, normalize_fs_path
from ...shared import detect_media_type, get_logger, timer
from .types import ScanFile

logger = get_logger(__name__)

# Compared case-insensitively
IGNORED_DIR_NAMES = frozenset({"$recycle.bin", "system volume information"})


def is_ignored_name(name: str) -> bool:
    """Hidden entries and OS system folders are never indexed."""
    if not name:
        return True
    return name.startswith(".") or name.lower() in IGNORED_DIR_NAMES


def _next_dir(entry: os.DirEntry) -> Optional[str]:
    try:
        # Do not recurse into symlinked directories.
        if entry.is_dir(follow_symlinks=False):
            return entry.path
    except OSError:
        return None
    return None


def _is_candidate_file(entry: os.DirEntry) -> bool:
    try:
        if not entry.is_file(follow_symlinks=True):
            return False
    except OSError:
        return False
    return detect_media_type(entry.name) is not None


def iter_media_paths(root: str) -> Iterator[str]:
    """Iterative scandir walk yielding supported media file paths under `root`."""
    stack: list[str] = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                for entry in it:
                    if is_ignored_name(entry.name):
                        continue
                    next_dir = _next_dir(entry)
                    if next_dir is not None:
                        stack.append(next_dir)
                        continue
                    if _is_candidate_file(entry):
                        yield entry.path
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", current, exc)
            continue


def stat_media_file(path: str) -> Optional[ScanFile]:
    """Build a `ScanFile` for `path`, or None if it is missing, unreadable, or unsupported."""
    media_type = detect_media_type(path)
    if media_type is None:
        return None
    try:
        st = os.stat(path)
    except OSError:
        return None
    if not os.path.isfile(path):
        return None
    mime, _ = mimetypes.guess_type(path)
    return ScanFile(
        path=normalize_fs_path(path),
        size_bytes=int(st.st_size),
        mtime_ms=int(st.st_mtime_ns // 1_000_000),
        media_type=media_type,
        mime=mime,
    )


def scan_media_files_sync(root: str) -> list[ScanFile]:
    root_path = os.path.abspath(str(root or ""))
    if not os.path.isdir(root_path):
        raise FileNotFoundError(f"Root is not a directory: {root_path}")
    files: list[ScanFile] = []
    seen: set[str] = set()
    with timer(f"scan {root_path}", logger):
        for path in iter_media_paths(root_path):
            scan_file = stat_media_file(path)
            if scan_file is None or scan_file.path in seen:
                continue
            seen.add(scan_file.path)
            files.append(scan_file)
    files.sort(key=lambda f: f.path)
    return files


def scan_specific_media_files_sync(paths: Iterable[str]) -> list[ScanFile]:
    files: list[ScanFile] = []
    for path in dedupe_paths(paths):
        scan_file = stat_media_file(path)
        if scan_file is not None:
            files.append(scan_file)
    return files


async def scan_media_files(root: str) -> list[ScanFile]:
    """Walk `root` and return every supported media file. Raises if the root is unusable."""
    return await asyncio.to_thread(scan_media_files_sync, root)


async def scan_specific_media_files(paths: Iterable[str]) -> list[ScanFile]:
    """Re-stat the given paths, silently dropping unreadable or unsupported ones."""
    return await asyncio.to_thread(scan_specific_media_files_sync, list(paths or ()))


class MediaScanner:
    """Scanner collaborator handed to the coordinator."""

    async def scan(self, root: str) -> list[ScanFile]:
        return await scan_media_files(root)

    async def scan_specific(self, paths: Iterable[str]) -> list[ScanFile]:
        return await scan_specific_media_files(paths)
