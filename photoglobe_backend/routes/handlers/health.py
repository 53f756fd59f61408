"""
Health check endpoint.
"""
from typing import Any, Mapping

from aiohttp import web

from photoglobe_backend.shared import ErrorCode, Result, get_logger, sanitize_error_message

from ..core import _json_response, _require_services

logger = get_logger(__name__)


async def _health_payload(svc: dict) -> dict[str, Any]:
    coordinator = svc["coordinator"]
    watcher = svc.get("watcher")
    exiftool = svc.get("exiftool")
    roots_res = await svc["roots"].list_all()
    jobs = coordinator.list_jobs()
    return {
        "exiftool_available": bool(exiftool and exiftool.is_available()),
        "watcher": {
            "running": bool(watcher and watcher.is_running),
            "roots": list(watcher.watched_roots) if watcher else [],
        },
        "roots": [root.path for root in roots_res.unwrap_or([])],
        "jobs": {
            "total": len(jobs),
            "active": sum(1 for s in jobs if not s.phase.is_terminal),
        },
        "enrichment_queue": coordinator.enricher.get_queue_length(),
    }


def register_health_routes(routes: web.RouteTableDef, deps: Mapping[str, Any] | None = None) -> None:
    """Register health routes."""
    require_services = (deps or {}).get("_require_services", _require_services)

    @routes.get("/photoglobe/health")
    async def health(request):
        """Get health status."""
        svc, error_result = await require_services()
        if error_result:
            return _json_response(error_result)
        try:
            result = Result.Ok(await _health_payload(svc))
        except Exception as exc:
            logger.warning("Health status failed: %s", exc)
            result = Result.Err(ErrorCode.SERVICE_UNAVAILABLE, sanitize_error_message(exc, "Health status failed"))
        return _json_response(result)
