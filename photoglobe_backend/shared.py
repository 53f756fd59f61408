"""Backend-facing alias for shared utilities."""

from __future__ import annotations

import photoglobe_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
IndexingError = _root_shared.IndexingError
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
request_id_var = _root_shared.request_id_var
sanitize_error_message = _root_shared.sanitize_error_message
detect_media_type = _root_shared.detect_media_type
ms = _root_shared.ms
timer = _root_shared.timer
MediaType = _root_shared.MediaType
IndexMode = _root_shared.IndexMode
SUPPORTED_EXTENSIONS = _root_shared.SUPPORTED_EXTENSIONS

__all__ = [
    "Result",
    "ErrorCode",
    "IndexingError",
    "get_logger",
    "log_success",
    "request_id_var",
    "sanitize_error_message",
    "detect_media_type",
    "ms",
    "timer",
    "MediaType",
    "IndexMode",
    "SUPPORTED_EXTENSIONS",
]
