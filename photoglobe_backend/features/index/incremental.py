"""
Incremental planner - diffs scan results against the catalog snapshot.

Full rescans use `create_incremental_plan`; watcher deltas use
`create_delta_plan`. Both key everything by `normalize_fs_path`.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping

from ...path_utils import dedupe_paths, normalize_fs_path
from .types import ExistingSnapshot, IncrementalPlan, ScanFile


def _is_changed(file: ScanFile, snapshot: ExistingSnapshot) -> bool:
    return int(snapshot.mtime_ms) != int(file.mtime_ms) or int(snapshot.size_bytes) != int(file.size_bytes)


def _classify_scanned(
    scanned: Iterable[ScanFile],
    existing: Mapping[str, ExistingSnapshot],
    plan: IncrementalPlan,
) -> set[str]:
    """Fill `to_process`/`to_restore`/`unchanged_count`; return the normalized keys seen."""
    seen: set[str] = set()
    restored: set[str] = set()
    for file in scanned or ():
        key = normalize_fs_path(file.path)
        seen.add(key)
        snapshot = existing.get(key)
        if snapshot is None or _is_changed(file, snapshot):
            plan.to_process.append(file)
            continue
        plan.unchanged_count += 1
        if snapshot.is_deleted and key not in restored:
            restored.add(key)
            plan.to_restore.append(key)
    return seen


def create_incremental_plan(
    scanned: Iterable[ScanFile],
    existing: Mapping[str, ExistingSnapshot],
) -> IncrementalPlan:
    """
    Plan a full-root rescan.

    Every live catalog path the scan did not see becomes a tombstone candidate.
    """
    plan = IncrementalPlan()
    seen = _classify_scanned(scanned, existing, plan)
    for key, snapshot in existing.items():
        if snapshot.is_deleted:
            continue
        norm_key = normalize_fs_path(key)
        if norm_key in seen:
            continue
        plan.to_delete.append(norm_key)
    return plan


def create_delta_plan(
    scanned: Iterable[ScanFile],
    removed_paths: Iterable[str],
    existing: Mapping[str, ExistingSnapshot],
) -> IncrementalPlan:
    """
    Plan a watcher-driven partial update.

    Only the explicitly removed paths are tombstoned, and only when the catalog
    still holds them live and the same delta did not re-scan them.
    """
    plan = IncrementalPlan()
    seen = _classify_scanned(scanned, existing, plan)
    for key in dedupe_paths(removed_paths or ()):
        if key in seen:
            continue
        snapshot = existing.get(key)
        if snapshot is None or snapshot.is_deleted:
            continue
        plan.to_delete.append(key)
    return plan
