"""
Request correlation for the HTTP API.
"""
from __future__ import annotations

import time
import uuid

from aiohttp import web

from .shared import get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def _get_request_id(request: web.Request) -> str:
    rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return rid[:64] or _new_request_id()


@web.middleware
async def request_context_middleware(request: web.Request, handler):
    """Tag every log line emitted while handling a request with its request id."""
    rid = _get_request_id(request)
    request["photoglobe_request_id"] = rid
    token = request_id_var.set(rid)
    start = time.perf_counter()
    status: int | None = None
    try:
        response = await handler(request)
        status = int(getattr(response, "status", 200) or 200)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
    except web.HTTPException as exc:
        status = exc.status
        exc.headers[REQUEST_ID_HEADER] = rid
        raise
    except Exception:
        status = 500
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        if status is not None and status >= 400:
            logger.warning("%s %s -> %s (%.1fms)", request.method, request.path, status, duration_ms)
        else:
            logger.debug("%s %s -> %s (%.1fms)", request.method, request.path, status, duration_ms)
        request_id_var.reset(token)
