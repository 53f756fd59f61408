"""
Database schema and migrations.
"""
from ...shared import Result, get_logger, log_success

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 2
# Schema version history (high-level):
# 1: roots, settings, photos
# 2: media support (media_type, mime, duration_ms) and tombstone timestamps

SCHEMA_V1 = """
-- Key/value store (schema version, app settings blob)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Registered media roots
CREATE TABLE IF NOT EXISTS roots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    last_scan_at_ms INTEGER,
    created_at_ms INTEGER NOT NULL,
    updated_at_ms INTEGER NOT NULL
);

-- Indexed media files
CREATE TABLE IF NOT EXISTS photos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    root_id INTEGER NOT NULL,
    path TEXT NOT NULL UNIQUE,  -- normalized path
    path_hash TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    mtime_ms INTEGER NOT NULL,
    lat REAL,
    lng REAL,
    alt REAL,
    taken_at_ms INTEGER,
    width INTEGER,
    height INTEGER,
    camera_model TEXT,
    thumb_path TEXT,
    thumb_updated_at_ms INTEGER,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    last_indexed_at_ms INTEGER NOT NULL,
    last_error TEXT,
    FOREIGN KEY (root_id) REFERENCES roots(id) ON DELETE CASCADE
);
"""

# (table, column, definition) added after v1
COLUMN_DEFINITIONS: dict[str, list[tuple[str, str]]] = {
    "photos": [
        ("media_type", "media_type TEXT NOT NULL DEFAULT 'photo'"),
        ("mime", "mime TEXT"),
        ("duration_ms", "duration_ms INTEGER"),
        ("deleted_at_ms", "deleted_at_ms INTEGER"),
    ],
}

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_photos_geo ON photos(lat, lng);
CREATE INDEX IF NOT EXISTS idx_photos_taken_at ON photos(taken_at_ms);
CREATE INDEX IF NOT EXISTS idx_photos_root_mtime ON photos(root_id, mtime_ms);
CREATE INDEX IF NOT EXISTS idx_photos_deleted ON photos(is_deleted);
CREATE INDEX IF NOT EXISTS idx_photos_media ON photos(media_type);
"""


async def _get_table_columns(db, table_name: str) -> Result[list[str]]:
    result = await db.aquery(f"PRAGMA table_info('{table_name}')")
    if not result.ok:
        return Result.Err("DB_ERROR", f"Unable to inspect {table_name}: {result.error}")
    return Result.Ok([row["name"] for row in result.data or []])


async def table_has_column(db, table_name: str, column_name: str) -> bool:
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        logger.warning("Unable to determine columns for %s.%s: %s", table_name, column_name, columns_result.error)
        return False
    return column_name in (columns_result.data or [])


async def _ensure_column(db, table_name: str, column_name: str, definition: str) -> Result:
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        return columns_result
    if column_name in (columns_result.data or []):
        return Result.Ok(True)
    logger.info("Adding missing column %s.%s", table_name, column_name)
    return await db.aexecute(f"ALTER TABLE {table_name} ADD COLUMN {definition}")


async def ensure_columns_exist(db) -> Result[bool]:
    for table, columns in COLUMN_DEFINITIONS.items():
        for column_name, definition in columns:
            result = await _ensure_column(db, table, column_name, definition)
            if not result.ok:
                logger.error("Failed to ensure column %s.%s: %s", table, column_name, result.error)
                return result
    return Result.Ok(True)


async def _ensure_schema(db) -> Result[bool]:
    result = await db.aexecutescript(SCHEMA_V1)
    if not result.ok:
        logger.error("Failed to ensure base tables: %s", result.error)
        return result

    result = await ensure_columns_exist(db)
    if not result.ok:
        return result

    result = await db.aexecutescript(INDEXES)
    if not result.ok:
        logger.error("Failed to ensure indexes: %s", result.error)
        return result

    version_result = await db.aset_schema_version(CURRENT_SCHEMA_VERSION)
    if not version_result.ok:
        logger.error("Failed to set schema version: %s", version_result.error)
        return version_result
    return Result.Ok(True)


async def migrate_schema(db) -> Result[bool]:
    """
    Bring the schema to the current version by ensuring expected tables,
    columns, and indexes exist.

    Args:
        db: Sqlite instance

    Returns:
        Result with success boolean
    """
    current_version = await db.aget_schema_version()
    logger.info("Ensuring schema (current version %s -> target %s)", current_version, CURRENT_SCHEMA_VERSION)

    repair_result = await _ensure_schema(db)
    if not repair_result.ok:
        return repair_result

    if current_version != CURRENT_SCHEMA_VERSION:
        log_success(logger, f"Schema migrated from version {current_version} to {CURRENT_SCHEMA_VERSION}")
    return Result.Ok(True)
