"""
Indexing job endpoints: start, cancel, status, job list.
"""
import os
from typing import Any, Mapping

from aiohttp import web

from photoglobe_backend.features.index.types import WatcherDelta
from photoglobe_backend.path_utils import dedupe_paths, normalize_fs_path, paths_under_root
from photoglobe_backend.shared import ErrorCode, Result, get_logger, sanitize_error_message
from photoglobe_backend.utils import parse_bool

from ..core import _json_response, _read_json, _require_services

logger = get_logger(__name__)

_VALID_MODES = {"full", "delta"}


def _path_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if isinstance(item, str) and item.strip()]


def _parse_start_body(body: Mapping[str, Any]) -> Result[dict]:
    root_path = normalize_fs_path(str(body.get("root_path") or body.get("rootPath") or ""))
    if not root_path:
        return Result.Err(ErrorCode.INVALID_INPUT, "Missing root_path")
    mode = str(body.get("mode") or "full").strip().lower()
    if mode not in _VALID_MODES:
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid mode: {mode}")
    if not os.path.isdir(root_path):
        return Result.Err(ErrorCode.NOT_FOUND, "Root directory does not exist")

    # Relative entries resolve against the root; anything that escapes it is rejected.
    requested = {}
    for key in ("added_or_changed_paths", "removed_paths"):
        raw = _path_list(body.get(key))
        inside = paths_under_root(raw, root_path)
        if len(inside) != len(dedupe_paths(os.path.join(root_path, p) for p in raw)):
            return Result.Err(ErrorCode.INVALID_INPUT, f"{key} must stay inside root_path")
        requested[key] = tuple(inside)

    return Result.Ok(
        {
            "root_path": root_path,
            "mode": mode,
            "delta": WatcherDelta(
                root_path=root_path,
                added_or_changed_paths=requested["added_or_changed_paths"],
                removed_paths=requested["removed_paths"],
                overflow=parse_bool(body.get("overflow"), False),
            ),
        }
    )


async def _remember_active_root(svc: dict, root_path: str) -> None:
    settings = svc.get("settings")
    if settings is None:
        return
    active = await settings.get_active_roots()
    if root_path in active:
        return
    res = await settings.set_active_roots([*active, root_path])
    if not res.ok:
        logger.warning("Could not persist active roots: %s", res.error)
        return
    watcher = svc.get("watcher")
    if watcher is not None and await settings.get_watch_enabled():
        await watcher.sync(res.data or [])


def register_indexing_routes(routes: web.RouteTableDef, deps: Mapping[str, Any] | None = None) -> None:
    """Register indexing job routes."""
    require_services = (deps or {}).get("_require_services", _require_services)

    @routes.post("/photoglobe/index/start")
    async def start_index(request):
        """Start a full (or delta) indexing job for a root."""
        svc, error_result = await require_services()
        if error_result:
            return _json_response(error_result)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        parsed = _parse_start_body(body_res.data or {})
        if not parsed.ok:
            return _json_response(parsed)

        coordinator = svc["coordinator"]
        root_path = parsed.data["root_path"]
        try:
            if parsed.data["mode"] == "delta":
                job_id = coordinator.start_delta(root_path, parsed.data["delta"])
            else:
                job_id = coordinator.start_full(root_path)
        except Exception as exc:
            logger.error("Failed to start index job: %s", exc)
            return _json_response(Result.Err(ErrorCode.INDEX_FAILED, sanitize_error_message(exc, "Failed to start indexing")))

        try:
            await _remember_active_root(svc, root_path)
        except Exception as exc:
            logger.warning("Failed to update watched roots: %s", exc)
        return _json_response(Result.Ok({"job_id": job_id}))

    @routes.post("/photoglobe/index/cancel")
    async def cancel_index(request):
        svc, error_result = await require_services()
        if error_result:
            return _json_response(error_result)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        job_id = str((body_res.data or {}).get("job_id") or "").strip()
        if not job_id:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing job_id"))
        return _json_response(Result.Ok({"cancelled": svc["coordinator"].cancel(job_id)}))

    @routes.get("/photoglobe/index/status/{job_id}")
    async def index_status(request):
        svc, error_result = await require_services()
        if error_result:
            return _json_response(error_result)

        status = svc["coordinator"].get_status(request.match_info.get("job_id", ""))
        if status is None:
            return _json_response(Result.Err(ErrorCode.NOT_FOUND, "Job not found"))
        return _json_response(Result.Ok(status.to_dict()))

    @routes.get("/photoglobe/index/jobs")
    async def index_jobs(request):
        svc, error_result = await require_services()
        if error_result:
            return _json_response(error_result)

        active_only = parse_bool(request.query.get("active"), False)
        jobs = [s for s in svc["coordinator"].list_jobs() if not (active_only and s.phase.is_terminal)]
        return _json_response(Result.Ok([s.to_dict() for s in jobs], total=len(jobs)))
