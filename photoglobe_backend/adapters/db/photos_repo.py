"""
Photo catalog repository.

All writes for one call run in a single transaction. Paths are stored
normalized so snapshot keys and scan results compare equal.
"""
from __future__ import annotations

from typing import Any, Optional

from ...features.index.types import ExistingSnapshot, PhotoMetadataPatch, PhotoUpsertInput
from ...path_utils import normalize_fs_path
from ...shared import ErrorCode, Result, get_logger
from .sqlite import Sqlite

logger = get_logger(__name__)

_UPSERT_SQL = """
INSERT INTO photos (
    root_id, path, path_hash, size_bytes, mtime_ms, media_type, mime,
    lat, lng, alt, taken_at_ms, width, height, duration_ms, camera_model,
    is_deleted, deleted_at_ms, last_indexed_at_ms, last_error
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
ON CONFLICT(path) DO UPDATE SET
    root_id = excluded.root_id,
    path_hash = excluded.path_hash,
    size_bytes = excluded.size_bytes,
    mtime_ms = excluded.mtime_ms,
    media_type = excluded.media_type,
    mime = excluded.mime,
    lat = excluded.lat,
    lng = excluded.lng,
    alt = excluded.alt,
    taken_at_ms = excluded.taken_at_ms,
    width = excluded.width,
    height = excluded.height,
    duration_ms = excluded.duration_ms,
    camera_model = excluded.camera_model,
    is_deleted = 0,
    deleted_at_ms = NULL,
    last_indexed_at_ms = excluded.last_indexed_at_ms,
    last_error = excluded.last_error
"""

# Refinement keeps the quick-pass value whenever the full pass found nothing.
_PATCH_SQL = """
UPDATE photos SET
    lat = COALESCE(?, lat),
    lng = COALESCE(?, lng),
    alt = COALESCE(?, alt),
    taken_at_ms = COALESCE(?, taken_at_ms),
    width = COALESCE(?, width),
    height = COALESCE(?, height),
    duration_ms = COALESCE(?, duration_ms),
    camera_model = COALESCE(?, camera_model),
    last_indexed_at_ms = ?,
    last_error = ?
WHERE root_id = ? AND path = ? AND is_deleted = 0
"""

_RESTORE_SQL = "UPDATE photos SET is_deleted = 0, deleted_at_ms = NULL, last_indexed_at_ms = ? WHERE path = ?"
_MARK_DELETED_SQL = "UPDATE photos SET is_deleted = 1, deleted_at_ms = ? WHERE root_id = ? AND path = ? AND is_deleted = 0"


class PhotosRepository:
    """Async access to the `photos` table."""

    def __init__(self, db: Sqlite):
        self._db = db

    async def get_existing_by_root(self, root_id: int) -> Result[dict[str, ExistingSnapshot]]:
        res = await self._db.aquery(
            "SELECT id, path, mtime_ms, size_bytes, is_deleted FROM photos WHERE root_id = ?",
            (int(root_id),),
        )
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to load catalog snapshot")
        snapshots: dict[str, ExistingSnapshot] = {}
        for row in res.data or []:
            key = normalize_fs_path(str(row.get("path") or ""))
            if not key:
                continue
            snapshots[key] = ExistingSnapshot(
                id=int(row["id"]),
                path=key,
                mtime_ms=int(row.get("mtime_ms") or 0),
                size_bytes=int(row.get("size_bytes") or 0),
                is_deleted=bool(row.get("is_deleted")),
            )
        return Result.Ok(snapshots)

    async def _write_many(self, sql: str, params: list[tuple], label: str) -> Result[int]:
        if not params:
            return Result.Ok(0)
        async with self._db.atransaction(mode="immediate") as tx:
            if not tx.ok:
                return Result.Err(tx.code or ErrorCode.DB_ERROR, tx.error or f"{label}: begin failed")
            res = await self._db.aexecutemany(sql, params)
            if not res.ok:
                # Abort the transaction; the caller sees the Result, not the exception.
                raise _WriteFailed(res)
        if not tx.ok:
            return Result.Err(tx.code or ErrorCode.DB_ERROR, tx.error or f"{label}: commit failed")
        return res

    async def _guarded_write(self, sql: str, params: list[tuple], label: str) -> Result[int]:
        try:
            return await self._write_many(sql, params, label)
        except _WriteFailed as failed:
            logger.warning("%s failed: %s", label, failed.result.error)
            return Result.Err(failed.result.code or ErrorCode.DB_ERROR, failed.result.error or f"{label} failed")

    async def upsert_batch(self, rows: list[PhotoUpsertInput]) -> Result[int]:
        params = [
            (
                int(r.root_id),
                normalize_fs_path(r.path),
                r.path_hash,
                int(r.size_bytes),
                int(r.mtime_ms),
                r.media_type,
                r.mime,
                r.metadata.lat,
                r.metadata.lng,
                r.metadata.alt,
                r.metadata.taken_at_ms,
                r.metadata.width,
                r.metadata.height,
                r.metadata.duration_ms,
                r.metadata.camera_model,
                int(r.last_indexed_at_ms),
                r.last_error,
            )
            for r in rows or []
        ]
        return await self._guarded_write(_UPSERT_SQL, params, "upsert_batch")

    async def patch_metadata_batch(self, patches: list[PhotoMetadataPatch]) -> Result[int]:
        params = [
            (
                p.metadata.lat,
                p.metadata.lng,
                p.metadata.alt,
                p.metadata.taken_at_ms,
                p.metadata.width,
                p.metadata.height,
                p.metadata.duration_ms,
                p.metadata.camera_model,
                int(p.last_indexed_at_ms),
                p.last_error,
                int(p.root_id),
                normalize_fs_path(p.path),
            )
            for p in patches or []
        ]
        return await self._guarded_write(_PATCH_SQL, params, "patch_metadata_batch")

    async def restore_by_paths(self, paths: list[str], now_ms: int) -> Result[int]:
        params = [(int(now_ms), normalize_fs_path(p)) for p in paths or [] if p]
        return await self._guarded_write(_RESTORE_SQL, params, "restore_by_paths")

    async def mark_deleted_by_paths(self, root_id: int, paths: list[str], now_ms: int) -> Result[int]:
        params = [(int(now_ms), int(root_id), normalize_fs_path(p)) for p in paths or [] if p]
        return await self._guarded_write(_MARK_DELETED_SQL, params, "mark_deleted_by_paths")

    async def get_by_path(self, path: str) -> Result[Optional[dict[str, Any]]]:
        res = await self._db.aquery("SELECT * FROM photos WHERE path = ? LIMIT 1", (normalize_fs_path(path),))
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to load photo")
        rows = res.data or []
        return Result.Ok(rows[0] if rows else None)

    async def count_by_root(self, root_id: int, include_deleted: bool = False) -> Result[int]:
        sql = "SELECT COUNT(*) AS n FROM photos WHERE root_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        res = await self._db.aquery(sql, (int(root_id),))
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to count photos")
        rows = res.data or []
        return Result.Ok(int(rows[0].get("n") or 0) if rows else 0)


class _WriteFailed(Exception):
    def __init__(self, result: Result):
        super().__init__(result.error)
        self.result = result
