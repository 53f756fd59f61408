"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from .adapters.db import PhotosRepository, RootsRepository, Sqlite, migrate_schema
from .adapters.tools import ExifTool
from .config import (
    DB_TIMEOUT,
    ENRICH_CONCURRENCY,
    EXIF_POOL_SIZE,
    EXIFTOOL_BIN,
    EXIFTOOL_TIMEOUT,
    INDEX_BATCH_SIZE,
    INDEX_CONCURRENCY,
    INDEX_DB,
    JOB_HISTORY_MAX,
    WATCHER_DEBOUNCE_MS,
    WATCHER_OVERFLOW_THRESHOLD,
    initialize_directories,
)
from .features.index.coordinator import IndexCoordinator
from .features.index.extractor import ExifMetadataExtractor
from .features.index.scanner import MediaScanner
from .features.index.types import WatcherDelta
from .features.index.watcher import FileWatcherService
from .settings import AppSettings
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


def _resolve_db_path(db_path: str | None) -> str:
    return db_path if db_path is not None else INDEX_DB


def _init_db_or_error(db_path: str) -> Result[Sqlite]:
    logger.info("Initializing database: %s", db_path)
    try:
        return Result.Ok(Sqlite(db_path, timeout=DB_TIMEOUT))
    except Exception as exc:
        logger.error("Failed to initialize database: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize database: {exc}")


async def _migrate_db_or_error(db: Sqlite) -> Result[bool]:
    migrate_result = await migrate_schema(db)
    if not migrate_result.ok:
        logger.error("Schema migration failed: %s", migrate_result.error)
        return Result.Err(migrate_result.code or ErrorCode.DB_ERROR, f"Failed to initialize database: {migrate_result.error}")
    return Result.Ok(True)


def _log_tool_availability(exiftool: ExifTool) -> None:
    if exiftool.is_available():
        log_success(logger, "ExifTool is available")
    else:
        logger.warning("ExifTool not found - only Pillow-readable images get metadata")


def _default_data_changed() -> None:
    logger.debug("Catalog data changed")


def _watcher_callback(coordinator: IndexCoordinator) -> Callable[[WatcherDelta], None]:
    def on_change(delta: WatcherDelta) -> None:
        if delta.overflow:
            logger.info("Watcher overflow for %s - falling back to a full rescan", delta.root_path)
            coordinator.start_full(delta.root_path)
            return
        coordinator.start_delta(delta.root_path, delta)

    return on_change


async def build_services(
    db_path: str | None = None,
    *,
    on_data_changed: Callable[[], Any] | None = None,
    exiftool: ExifTool | None = None,
) -> Result[dict]:
    """
    Build all services (DI container).

    Args:
        db_path: Path to SQLite database (default: from config.INDEX_DB)
        on_data_changed: Called (fire-and-forget) after catalog writes
        exiftool: Pre-built ExifTool adapter (tests)

    Returns:
        Result[dict] of service instances
    """
    logger.info("Building services...")
    try:
        initialize_directories()
    except Exception as exc:
        logger.error("Failed to initialize directories: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize directories: {exc}")

    db_res = _init_db_or_error(_resolve_db_path(db_path))
    if not db_res.ok or db_res.data is None:
        return Result.Err(db_res.code or ErrorCode.DB_ERROR, db_res.error or "Failed to initialize database")
    db = db_res.data

    migrate_result = await _migrate_db_or_error(db)
    if not migrate_result.ok:
        await db.aclose()
        return migrate_result  # type: ignore[return-value]

    exiftool = exiftool or ExifTool(bin_name=EXIFTOOL_BIN or "exiftool", timeout=EXIFTOOL_TIMEOUT)
    _log_tool_availability(exiftool)

    photos = PhotosRepository(db)
    roots = RootsRepository(db)
    settings = AppSettings(db)
    extractor = ExifMetadataExtractor(exiftool, pool_size=EXIF_POOL_SIZE)
    coordinator = IndexCoordinator(
        photos,
        roots,
        settings,
        extractor,
        MediaScanner(),
        on_data_changed=on_data_changed or _default_data_changed,
        concurrency=INDEX_CONCURRENCY,
        batch_size=INDEX_BATCH_SIZE,
        history_max=JOB_HISTORY_MAX,
        enrich_concurrency=ENRICH_CONCURRENCY,
    )
    watcher = FileWatcherService(
        _watcher_callback(coordinator),
        debounce_ms=WATCHER_DEBOUNCE_MS,
        overflow_threshold=WATCHER_OVERFLOW_THRESHOLD,
    )

    services = {
        "db": db,
        "exiftool": exiftool,
        "photos": photos,
        "roots": roots,
        "settings": settings,
        "extractor": extractor,
        "coordinator": coordinator,
        "enricher": coordinator.enricher,
        "watcher": watcher,
    }
    log_success(logger, "All services initialized")
    return Result.Ok(services)


async def _resolve_active_roots(services: dict) -> list[Any]:
    """Active roots that still exist in the catalog; all known roots when none are set."""
    roots_res = await services["roots"].list_all()
    if not roots_res.ok:
        logger.warning("Could not list roots: %s", roots_res.error)
        return []
    known = {root.path: root for root in roots_res.data or []}
    settings = services["settings"]
    stored = await settings.get_active_roots()
    active = [known[path] for path in stored if path in known] or list(known.values())
    active_paths = [root.path for root in active]
    if active_paths != stored:
        await settings.set_active_roots(active_paths)
    return active


async def _run_sequential_scans(coordinator: IndexCoordinator, root_paths: list[str]) -> None:
    for root_path in root_paths:
        try:
            job_id = coordinator.start_full(root_path)
            await coordinator.wait_for_job(job_id)
        except Exception as exc:
            logger.warning("Initial scan failed for %s: %s", root_path, exc)


async def bootstrap_services(services: dict) -> asyncio.Task | None:
    """
    Resume watching the active roots and scan roots that were never scanned.

    First scans run one after another in a background task, which is returned.
    """
    active = await _resolve_active_roots(services)
    if await services["settings"].get_watch_enabled():
        try:
            await services["watcher"].sync([root.path for root in active])
        except Exception as exc:
            logger.warning("File watcher disabled: %s", exc)

    first_scan = [root.path for root in active if root.last_scan_at_ms is None]
    if not first_scan:
        return None
    logger.info("Scheduling first scan for %d root(s)", len(first_scan))
    task = asyncio.create_task(_run_sequential_scans(services["coordinator"], first_scan))
    services["bootstrap_task"] = task
    return task


async def dispose_services(services: dict) -> None:
    """
    Dispose of all services, each one independently.
    Errors in one service disposal do not prevent others from being disposed.
    """
    disposal_errors = []

    task = services.get("bootstrap_task")
    if task is not None and not task.done():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    for name, dispose in (
        ("watcher", lambda s: s.stop()),
        ("coordinator", lambda s: s.dispose()),
        ("db", lambda s: s.aclose()),
    ):
        service = services.get(name)
        if service is None:
            continue
        try:
            await dispose(service)
        except Exception as exc:
            logger.warning("Error disposing %s: %s", name, exc, exc_info=True)
            disposal_errors.append(name)

    if disposal_errors:
        logger.warning("Service disposal completed with %d error(s)", len(disposal_errors))
