"""
SQLite database connection manager.

Implementation notes:
- This adapter uses `aiosqlite`; the public API is async.
- One shared connection in autocommit mode; statements are serialized by an
  `asyncio.Lock`, and `atransaction()` holds that lock for the whole block.
- Statements issued inside `atransaction()` are routed to the open transaction
  through a context variable token.

Critical guarantee:
- The adapter never raises to callers; it returns `Result(...)`.
"""

from __future__ import annotations

import asyncio
import contextvars
import sqlite3
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from ...config import DB_TIMEOUT
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = max(1000, int(float(DB_TIMEOUT) * 1000))
# Negative cache_size is in KiB. -32000 ~= 32 MiB cache.
SQLITE_CACHE_SIZE_KIB = -32000

_TX_TOKEN: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("photoglobe_db_tx_token", default=None)


def _rows_to_dicts(rows: Any) -> list[dict[str, Any]]:
    if not rows:
        return []
    return [dict(r) for r in rows]


def _begin_stmt_for_mode(mode: str) -> str:
    mode_l = str(mode or "").strip().lower()
    if mode_l in ("immediate", "write"):
        return "BEGIN IMMEDIATE"
    if mode_l == "exclusive":
        return "BEGIN EXCLUSIVE"
    return "BEGIN"


class Sqlite:
    """
    Async SQLite adapter returning `Result` objects.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self._timeout = float(timeout)
        self._conn: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None
        self._active_tx: str | None = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA cache_size={SQLITE_CACHE_SIZE_KIB}")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        await conn.execute("PRAGMA foreign_keys=ON")

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode; transactions are managed explicitly (BEGIN/COMMIT).
            conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            await self._apply_connection_pragmas(conn)
            self._conn = conn
        return self._conn

    def _in_transaction(self) -> bool:
        token = _TX_TOKEN.get()
        return bool(token) and token == self._active_tx

    @asynccontextmanager
    async def _guard(self):
        # Statements inside an open transaction already hold the lock.
        if self._in_transaction():
            yield
            return
        async with self._get_lock():
            yield

    @staticmethod
    def _error_result(exc: Exception) -> Result[Any]:
        if isinstance(exc, sqlite3.IntegrityError):
            logger.warning("Integrity error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Integrity error: {exc}")
        if isinstance(exc, sqlite3.OperationalError):
            logger.error("Operational error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Operational error: {exc}")
        logger.error("Unexpected database error: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecute(self, query: str, params: tuple | None = None, fetch: bool = False) -> Result[Any]:
        """Execute one statement; returns rows when `fetch`, else the write summary."""
        try:
            async with self._guard():
                conn = await self._connection()
                cursor = await conn.execute(query, params or ())
                try:
                    if fetch:
                        rows = await cursor.fetchall()
                        return Result.Ok(_rows_to_dicts(rows))
                    return Result.Ok({"rowcount": cursor.rowcount, "lastrowid": cursor.lastrowid})
                finally:
                    await cursor.close()
        except Exception as exc:
            return self._error_result(exc)

    async def aquery(self, sql: str, params: tuple | None = None) -> Result[list[dict[str, Any]]]:
        """Execute a SELECT query and return rows."""
        return await self.aexecute(sql, params, fetch=True)

    async def aexecutemany(self, query: str, params_list: list[tuple]) -> Result[int]:
        """Execute the same statement for every parameter tuple; returns affected rows."""
        if not params_list:
            return Result.Ok(0)
        try:
            async with self._guard():
                conn = await self._connection()
                cursor = await conn.executemany(query, params_list)
                try:
                    return Result.Ok(max(0, int(cursor.rowcount or 0)))
                finally:
                    await cursor.close()
        except Exception as exc:
            return self._error_result(exc)

    async def aexecutescript(self, script: str) -> Result[bool]:
        try:
            async with self._guard():
                conn = await self._connection()
                await conn.executescript(script)
                return Result.Ok(True)
        except Exception as exc:
            return self._error_result(exc)

    async def ahas_table(self, table_name: str) -> bool:
        """Return True if `table_name` exists in sqlite_master."""
        result = await self.aquery(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        )
        return bool(result.ok and result.data)

    async def aget_schema_version(self) -> int:
        """Schema version stored in `settings` (0 on a fresh database)."""
        if not await self.ahas_table("settings"):
            return 0
        res = await self.aquery("SELECT value FROM settings WHERE key = 'schema_version'")
        if not res.ok or not res.data:
            return 0
        try:
            return int(res.data[0].get("value") or 0)
        except (TypeError, ValueError):
            return 0

    async def aset_schema_version(self, version: int) -> Result[Any]:
        return await self.aexecute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES ('schema_version', ?)",
            (str(int(version)),),
        )

    @asynccontextmanager
    async def atransaction(self, mode: str = "immediate"):
        """
        Async context manager for a DB transaction.

        Yields a `Result` whose `ok` turns False if BEGIN or COMMIT fails.
        Exceptions raised inside the block roll back and propagate.
        """
        lock = self._get_lock()
        await lock.acquire()
        tx_state: Result[bool] = Result.Ok(True)
        try:
            conn = await self._connection()
            await conn.execute(_begin_stmt_for_mode(mode))
        except Exception as exc:
            lock.release()
            logger.error("Failed to begin transaction: %s", exc)
            yield Result.Err(ErrorCode.DB_ERROR, f"Failed to begin transaction: {exc}")
            return

        token = f"tx_{uuid.uuid4().hex}"
        self._active_tx = token
        token_handle = _TX_TOKEN.set(token)
        try:
            yield tx_state
            try:
                await conn.commit()
            except Exception as exc:
                tx_state.ok = False
                tx_state.code = ErrorCode.DB_ERROR.value
                tx_state.error = f"Commit failed: {exc}"
                try:
                    await conn.rollback()
                except Exception:
                    logger.debug("Rollback after failed commit also failed", exc_info=True)
        except BaseException:
            try:
                await conn.rollback()
            except Exception:
                logger.debug("Rollback failed", exc_info=True)
            raise
        finally:
            _TX_TOKEN.reset(token_handle)
            self._active_tx = None
            lock.release()

    async def aclose(self) -> None:
        """Close the shared connection."""
        conn = self._conn
        self._conn = None
        if conn is None:
            return
        try:
            await conn.close()
        except Exception as exc:
            logger.debug("Database close error: %s", exc)
