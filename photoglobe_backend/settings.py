"""
Application settings persisted in the local `settings` table.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from .config import RECENT_ROOTS_MAX, WATCHER_ENABLED
from .path_utils import dedupe_paths, merge_recent_roots
from .shared import Result, get_logger
from .utils import parse_bool

logger = get_logger(__name__)

_RECENT_ROOTS_KEY = "recent_roots"
_ACTIVE_ROOTS_KEY = "active_roots"
_WATCH_ENABLED_KEY = "watch_enabled"


class AppSettings:
    """
    Simple settings manager backed by the settings table.

    Keeps the recent-roots history (most recent first, capped), the set of
    roots that should be watched, and the watch toggle.
    """

    def __init__(self, db, recent_limit: int = RECENT_ROOTS_MAX):
        self._db = db
        self._lock = asyncio.Lock()
        self._recent_limit = max(1, int(recent_limit))

    async def _read_setting(self, key: str) -> Optional[str]:
        result = await self._db.aquery("SELECT value FROM settings WHERE key = ?", (key,))
        if not result.ok or not result.data:
            return None
        raw = result.data[0].get("value")
        if isinstance(raw, str):
            return raw.strip()
        return None

    async def _write_setting(self, key: str, value: str) -> Result[Any]:
        return await self._db.aexecute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value),
        )

    async def _read_path_list(self, key: str) -> list[str]:
        raw = await self._read_setting(key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed %s setting", key)
            return []
        if not isinstance(parsed, list):
            return []
        return [str(item) for item in parsed if isinstance(item, str) and item.strip()]

    async def get_recent_roots(self) -> list[str]:
        async with self._lock:
            return await self._read_path_list(_RECENT_ROOTS_KEY)

    async def add_recent_root(self, root_path: str) -> Result[list[str]]:
        """Move `root_path` to the front of the recent-roots history."""
        async with self._lock:
            current = await self._read_path_list(_RECENT_ROOTS_KEY)
            merged = merge_recent_roots(current, root_path, self._recent_limit)
            res = await self._write_setting(_RECENT_ROOTS_KEY, json.dumps(merged))
            if not res.ok:
                return Result.Err("DB_ERROR", res.error or "Failed to persist recent roots")
            return Result.Ok(merged)

    async def get_active_roots(self) -> list[str]:
        async with self._lock:
            return await self._read_path_list(_ACTIVE_ROOTS_KEY)

    async def set_active_roots(self, root_paths: list[str]) -> Result[list[str]]:
        cleaned = dedupe_paths(root_paths)
        async with self._lock:
            res = await self._write_setting(_ACTIVE_ROOTS_KEY, json.dumps(cleaned))
            if not res.ok:
                return Result.Err("DB_ERROR", res.error or "Failed to persist active roots")
            return Result.Ok(cleaned)

    async def get_watch_enabled(self) -> bool:
        async with self._lock:
            raw = await self._read_setting(_WATCH_ENABLED_KEY)
        if raw is None:
            return bool(WATCHER_ENABLED)
        return parse_bool(raw, bool(WATCHER_ENABLED))

    async def set_watch_enabled(self, enabled: bool) -> Result[bool]:
        value = parse_bool(enabled, False)
        async with self._lock:
            res = await self._write_setting(_WATCH_ENABLED_KEY, "1" if value else "0")
        if not res.ok:
            return Result.Err("DB_ERROR", res.error or "Failed to persist watch toggle")
        logger.info("File watching %s", "enabled" if value else "disabled")
        return Result.Ok(value)
