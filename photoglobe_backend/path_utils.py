"""
Shared path normalization helpers.

Every component that compares paths (scanner, planner, repositories, watcher,
coordinator token maps) goes through `normalize_fs_path` so that snapshot keys
and scan results agree on case and separators.
"""

from __future__ import annotations

import os
from collections.abc import Iterable


def normalize_fs_path(value: str) -> str:
    """Normalize separators and, on case-insensitive platforms, case."""
    raw = str(value or "").strip()
    if not raw:
        return ""
    return os.path.normcase(os.path.normpath(raw))


def dedupe_paths(values: Iterable[str]) -> list[str]:
    """Normalize, drop blanks, and dedupe while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values or ():
        key = normalize_fs_path(value)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(key)
    return out


def merge_recent_roots(current: Iterable[str], root_path: str, limit: int = 10) -> list[str]:
    """Put `root_path` first, keep the remaining history in order, cap at `limit`."""
    head = normalize_fs_path(root_path)
    merged = dedupe_paths([head, *list(current or [])])
    return merged[: max(1, int(limit))]


def is_under_path(candidate: str, root: str) -> bool:
    if not candidate or not root:
        return False
    try:
        return os.path.commonpath([candidate, root]) == root
    except ValueError:
        pass
    root_sep = root if root.endswith(os.sep) else root + os.sep
    return candidate.startswith(root_sep) or candidate == root


def paths_under_root(values: Iterable[str], root: str) -> list[str]:
    """`dedupe_paths` restricted to entries strictly inside `root`; relative entries resolve against it."""
    root_key = normalize_fs_path(root)
    if not root_key:
        return []
    joined = (os.path.join(root_key, str(value).strip()) for value in values or () if str(value or "").strip())
    return [path for path in dedupe_paths(joined) if path != root_key and is_under_path(path, root_key)]
