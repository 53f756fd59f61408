"""
Media roots repository.
"""
from __future__ import annotations

from typing import Any, Optional

from ...features.index.types import RootRecord
from ...path_utils import normalize_fs_path
from ...shared import ErrorCode, Result, ms
from .sqlite import Sqlite

_ROOT_COLUMNS = "id, path, last_scan_at_ms, created_at_ms, updated_at_ms"


def _to_root(row: dict[str, Any]) -> RootRecord:
    last_scan = row.get("last_scan_at_ms")
    return RootRecord(
        id=int(row["id"]),
        path=str(row["path"]),
        last_scan_at_ms=int(last_scan) if last_scan is not None else None,
        created_at_ms=int(row.get("created_at_ms") or 0),
        updated_at_ms=int(row.get("updated_at_ms") or 0),
    )


class RootsRepository:
    def __init__(self, db: Sqlite):
        self._db = db

    async def ensure(self, root_path: str) -> Result[RootRecord]:
        """Insert the root if missing, otherwise bump its `updated_at_ms`."""
        path = normalize_fs_path(root_path)
        if not path:
            return Result.Err(ErrorCode.INVALID_INPUT, "Root path is empty")
        now_ms = ms()
        res = await self._db.aexecute(
            """
            INSERT INTO roots (path, last_scan_at_ms, created_at_ms, updated_at_ms)
            VALUES (?, NULL, ?, ?)
            ON CONFLICT(path) DO UPDATE SET updated_at_ms = excluded.updated_at_ms
            """,
            (path, now_ms, now_ms),
        )
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to register root")
        found = await self.find_by_path(path)
        if not found.ok:
            return Result.Err(found.code, found.error or "Failed to load root")
        if found.data is None:
            return Result.Err(ErrorCode.DB_ERROR, f"Root disappeared after insert: {path}")
        return Result.Ok(found.data)

    async def find_by_path(self, root_path: str) -> Result[Optional[RootRecord]]:
        res = await self._db.aquery(
            f"SELECT {_ROOT_COLUMNS} FROM roots WHERE path = ? LIMIT 1",
            (normalize_fs_path(root_path),),
        )
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to query roots")
        rows = res.data or []
        return Result.Ok(_to_root(rows[0]) if rows else None)

    async def set_last_scan(self, root_id: int, now_ms: int) -> Result[Any]:
        return await self._db.aexecute(
            "UPDATE roots SET last_scan_at_ms = ?, updated_at_ms = ? WHERE id = ?",
            (int(now_ms), int(now_ms), int(root_id)),
        )

    async def list_recent(self, limit: int = 10) -> Result[list[RootRecord]]:
        res = await self._db.aquery(
            f"SELECT {_ROOT_COLUMNS} FROM roots ORDER BY updated_at_ms DESC, id DESC LIMIT ?",
            (max(1, int(limit)),),
        )
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to list roots")
        return Result.Ok([_to_root(row) for row in res.data or []])

    async def list_all(self) -> Result[list[RootRecord]]:
        res = await self._db.aquery(f"SELECT {_ROOT_COLUMNS} FROM roots ORDER BY id ASC")
        if not res.ok:
            return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Failed to list roots")
        return Result.Ok([_to_root(row) for row in res.data or []])
