"""
Shared types, enums, and constants.
"""
import os
from enum import Enum
from typing import Final, Literal, Optional

MediaType = Literal["photo", "video"]

IndexMode = Literal["full", "delta"]


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    NOT_FOUND = "NOT_FOUND"

    # Feature / service availability
    TOOL_MISSING = "TOOL_MISSING"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Server / infrastructure
    DB_ERROR = "DB_ERROR"
    TIMEOUT = "TIMEOUT"

    # Operation errors
    SCAN_FAILED = "SCAN_FAILED"
    INDEX_FAILED = "INDEX_FAILED"
    METADATA_FAILED = "METADATA_FAILED"

    # Tool / parsing
    EXIFTOOL_ERROR = "EXIFTOOL_ERROR"
    PARSE_ERROR = "PARSE_ERROR"


PHOTO_EXTENSIONS: Final[frozenset[str]] = frozenset({
    ".jpg", ".jpeg", ".png", ".heic", ".heif",
    ".dng", ".cr2", ".cr3", ".nef", ".nrw", ".arw", ".sr2",
    ".rw2", ".orf", ".raf", ".pef", ".srw", ".raw",
})

VIDEO_EXTENSIONS: Final[frozenset[str]] = frozenset({".mov", ".mp4"})

SUPPORTED_EXTENSIONS: Final[frozenset[str]] = PHOTO_EXTENSIONS | VIDEO_EXTENSIONS


def detect_media_type(filename: str) -> Optional[MediaType]:
    """
    Classify a file by extension.

    Returns:
        "photo", "video", or None for unsupported files
    """
    ext = os.path.splitext(str(filename or ""))[1].lower()
    if ext in PHOTO_EXTENSIONS:
        return "photo"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    return None
