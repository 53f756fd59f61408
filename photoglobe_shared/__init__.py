"""Shared utilities for the PhotoGlobe indexer."""
from .errors import IndexingError, sanitize_error_message
from .log import get_logger, log_success, request_id_var
from .result import Result
from .time import ms, timer
from .types import (
    PHOTO_EXTENSIONS,
    SUPPORTED_EXTENSIONS,
    VIDEO_EXTENSIONS,
    ErrorCode,
    IndexMode,
    MediaType,
    detect_media_type,
)

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "request_id_var",
    "ms",
    "timer",
    "ErrorCode",
    "IndexMode",
    "MediaType",
    "PHOTO_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "SUPPORTED_EXTENSIONS",
    "detect_media_type",
    "IndexingError",
    "sanitize_error_message",
]
