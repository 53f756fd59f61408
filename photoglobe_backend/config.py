"""
Configuration for the PhotoGlobe indexer.
"""
import os
import logging
from pathlib import Path

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


def _resolve_data_dir() -> Path:
    env_path = _env_raw("PHOTOGLOBE_DATA_DIR")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve PHOTOGLOBE_DATA_DIR: %s, using fallback", env_path)
    return (Path.home() / ".photoglobe").resolve()


def _cpu_count() -> int:
    return max(1, os.cpu_count() or 1)


# Storage
DATA_DIR_PATH = _resolve_data_dir()
DATA_DIR = str(DATA_DIR_PATH)
INDEX_DB = str(_env_raw("PHOTOGLOBE_INDEX_DB", default=str(DATA_DIR_PATH / "index.sqlite")))
DB_TIMEOUT = _env_float(30.0, "PHOTOGLOBE_DB_TIMEOUT", min_value=1.0, max_value=300.0)

# Indexing pipeline
INDEX_CONCURRENCY = _env_int(min(8, _cpu_count()), "PHOTOGLOBE_INDEX_CONCURRENCY", min_value=1, max_value=16)
INDEX_BATCH_SIZE = _env_int(256, "PHOTOGLOBE_INDEX_BATCH_SIZE", min_value=1, max_value=10_000)
ENRICH_CONCURRENCY = _env_int(2, "PHOTOGLOBE_ENRICH_CONCURRENCY", min_value=1, max_value=8)
JOB_HISTORY_MAX = _env_int(200, "PHOTOGLOBE_JOB_HISTORY_MAX", min_value=1, max_value=100_000)
RECENT_ROOTS_MAX = 10
LAST_ERROR_MAX_CHARS = 400

# External tools
EXIFTOOL_BIN = _env_raw("PHOTOGLOBE_EXIFTOOL_PATH", "PHOTOGLOBE_EXIFTOOL_BIN", default="exiftool")
EXIFTOOL_TIMEOUT = _env_int(30, "PHOTOGLOBE_EXIFTOOL_TIMEOUT", min_value=1, max_value=600)
EXIF_POOL_SIZE = _env_int(min(4, _cpu_count()), "PHOTOGLOBE_EXIF_POOL", min_value=1, max_value=12)

# File watcher
# Disable with PHOTOGLOBE_WATCHER_ENABLED=0
WATCHER_ENABLED = _env_bool(True, "PHOTOGLOBE_WATCHER_ENABLED")
WATCHER_DEBOUNCE_MS = _env_int(1500, "PHOTOGLOBE_WATCHER_DEBOUNCE_MS", min_value=0, max_value=120_000)
WATCHER_OVERFLOW_THRESHOLD = _env_int(1200, "PHOTOGLOBE_WATCHER_OVERFLOW_THRESHOLD", min_value=1, max_value=1_000_000)

# HTTP surface
SERVER_HOST = str(_env_raw("PHOTOGLOBE_HOST", default="127.0.0.1"))
SERVER_PORT = _env_int(8787, "PHOTOGLOBE_PORT", min_value=1, max_value=65535)


def initialize_directories() -> None:
    """Create the data directory (and the database parent) if they do not exist."""
    os.makedirs(DATA_DIR, exist_ok=True)
    db_parent = os.path.dirname(os.path.abspath(INDEX_DB))
    if db_parent:
        os.makedirs(db_parent, exist_ok=True)
