import json
from types import SimpleNamespace

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from photoglobe_backend.features.index.types import IndexPhase, IndexStatus
from photoglobe_backend.path_utils import normalize_fs_path
from photoglobe_backend.routes.handlers import health as health_mod
from photoglobe_backend.routes.handlers import indexing as indexing_mod
from photoglobe_backend.shared import Result


class _Coordinator:
    def __init__(self):
        self.started = []
        self.cancelled = []
        self.statuses = {}
        self.enricher = SimpleNamespace(get_queue_length=lambda: 3)

    def start_full(self, root_path):
        self.started.append(("full", root_path, None))
        return "job-full"

    def start_delta(self, root_path, delta):
        self.started.append(("delta", root_path, delta))
        return "job-delta"

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        return job_id in self.statuses

    def get_status(self, job_id):
        return self.statuses.get(job_id)

    def list_jobs(self):
        return list(self.statuses.values())


class _Settings:
    def __init__(self, active=None, watch=True):
        self.active = list(active or [])
        self.watch = watch

    async def get_active_roots(self):
        return list(self.active)

    async def set_active_roots(self, paths):
        self.active = list(paths)
        return Result.Ok(list(paths))

    async def get_watch_enabled(self):
        return self.watch


class _Watcher:
    def __init__(self):
        self.synced = []
        self.is_running = True
        self.watched_roots = ["/library"]

    async def sync(self, roots):
        self.synced.append(list(roots))
        return list(roots)


class _Roots:
    async def list_all(self):
        return Result.Ok([SimpleNamespace(path="/library")])


class _ExifTool:
    def is_available(self):
        return False


def _services(**overrides):
    svc = {
        "coordinator": _Coordinator(),
        "settings": _Settings(),
        "watcher": _Watcher(),
        "roots": _Roots(),
        "exiftool": _ExifTool(),
    }
    svc.update(overrides)
    return svc


def _deps(svc):
    async def _require_services():
        return svc, None

    return {"_require_services": _require_services}


def _app(register, deps):
    app = web.Application()
    routes = web.RouteTableDef()
    register(routes, deps=deps)
    app.add_routes(routes)
    return app


async def _post(app, path, body):
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        resp = await client.post(path, data=body if isinstance(body, (bytes, str)) else json.dumps(body))
        assert resp.status == 200
        return await resp.json()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_start_full_job_and_remember_root(tmp_path):
    svc = _services()
    app = _app(indexing_mod.register_indexing_routes, _deps(svc))

    payload = await _post(app, "/photoglobe/index/start", {"root_path": str(tmp_path)})

    assert payload["ok"] is True
    assert payload["data"] == {"job_id": "job-full"}
    root = normalize_fs_path(str(tmp_path))
    assert svc["coordinator"].started == [("full", root, None)]
    assert svc["settings"].active == [root]
    assert svc["watcher"].synced == [[root]]


@pytest.mark.asyncio
async def test_start_delta_job_passes_paths(tmp_path):
    svc = _services(settings=_Settings(active=[normalize_fs_path(str(tmp_path))]))
    app = _app(indexing_mod.register_indexing_routes, _deps(svc))

    payload = await _post(
        app,
        "/photoglobe/index/start",
        {"root_path": str(tmp_path), "mode": "delta", "added_or_changed_paths": ["a.jpg", 3, ""], "removed_paths": ["b.jpg"]},
    )

    assert payload["data"] == {"job_id": "job-delta"}
    mode, _root, delta = svc["coordinator"].started[0]
    assert mode == "delta"
    assert delta.added_or_changed_paths == (normalize_fs_path(str(tmp_path / "a.jpg")),)
    assert delta.removed_paths == (normalize_fs_path(str(tmp_path / "b.jpg")),)
    assert delta.overflow is False
    assert svc["watcher"].synced == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, code",
    [
        ({}, "INVALID_INPUT"),
        ({"root_path": "/definitely/not/here"}, "NOT_FOUND"),
        (b"{not json", "INVALID_JSON"),
        (b"[1, 2]", "INVALID_JSON"),
    ],
)
async def test_start_rejects_bad_requests(body, code):
    svc = _services()
    app = _app(indexing_mod.register_indexing_routes, _deps(svc))

    payload = await _post(app, "/photoglobe/index/start", body)

    assert payload["ok"] is False
    assert payload["code"] == code
    assert svc["coordinator"].started == []


@pytest.mark.asyncio
async def test_start_rejects_unknown_mode(tmp_path):
    app = _app(indexing_mod.register_indexing_routes, _deps(_services()))
    payload = await _post(app, "/photoglobe/index/start", {"root_path": str(tmp_path), "mode": "turbo"})
    assert payload["code"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_cancel_requires_job_id():
    svc = _services()
    app = _app(indexing_mod.register_indexing_routes, _deps(svc))

    assert (await _post(app, "/photoglobe/index/cancel", {}))["code"] == "INVALID_INPUT"
    payload = await _post(app, "/photoglobe/index/cancel", {"job_id": "job-x"})
    assert payload["data"] == {"cancelled": False}
    assert svc["coordinator"].cancelled == ["job-x"]


@pytest.mark.asyncio
async def test_status_and_job_list():
    svc = _services()
    svc["coordinator"].statuses = {
        "j1": IndexStatus(job_id="j1", root_path="/library", mode="full", phase=IndexPhase.COMPLETE, percent=100),
        "j2": IndexStatus(job_id="j2", root_path="/library", mode="delta", phase=IndexPhase.EXTRACTING, percent=40),
    }
    app = _app(indexing_mod.register_indexing_routes, _deps(svc))

    req = make_mocked_request("GET", "/photoglobe/index/status/j2", app=app)
    match = await app.router.resolve(req)
    req._match_info = match
    resp = await match.handler(req)
    payload = json.loads(resp.text)
    assert payload["ok"] is True
    assert payload["data"]["phase"] == "extracting"
    assert payload["data"]["percent"] == 40

    req = make_mocked_request("GET", "/photoglobe/index/status/missing", app=app)
    match = await app.router.resolve(req)
    req._match_info = match
    payload = json.loads((await match.handler(req)).text)
    assert payload["code"] == "NOT_FOUND"

    req = make_mocked_request("GET", "/photoglobe/index/jobs?active=1", app=app)
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)
    assert [job["job_id"] for job in payload["data"]] == ["j2"]
    assert payload["meta"] == {"total": 1}


@pytest.mark.asyncio
async def test_routes_report_unavailable_services():
    async def _unavailable():
        return None, Result.Err("SERVICE_UNAVAILABLE", "Services are unavailable")

    app = _app(indexing_mod.register_indexing_routes, {"_require_services": _unavailable})
    req = make_mocked_request("GET", "/photoglobe/index/jobs", app=app)
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)
    assert payload["ok"] is False
    assert payload["code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_health_payload():
    svc = _services()
    svc["coordinator"].statuses = {
        "j1": IndexStatus(job_id="j1", root_path="/library", mode="full", phase=IndexPhase.SCANNING),
    }
    app = _app(health_mod.register_health_routes, _deps(svc))

    req = make_mocked_request("GET", "/photoglobe/health", app=app)
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)

    assert payload["ok"] is True
    data = payload["data"]
    assert data["exiftool_available"] is False
    assert data["watcher"] == {"running": True, "roots": ["/library"]}
    assert data["roots"] == ["/library"]
    assert data["jobs"] == {"total": 1, "active": 1}
    assert data["enrichment_queue"] == 3


@pytest.mark.asyncio
async def test_health_payload_tolerates_roots_query_failure():
    class _BrokenRoots:
        async def list_all(self):
            return Result.Err("DB_ERROR", "Operational error: disk I/O error")

    app = _app(health_mod.register_health_routes, _deps(_services(roots=_BrokenRoots())))

    req = make_mocked_request("GET", "/photoglobe/health", app=app)
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)

    assert payload["ok"] is True
    assert payload["data"]["roots"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["added_or_changed_paths", "removed_paths"])
async def test_start_delta_rejects_paths_outside_root(services, tmp_path, key):
    from PIL import Image

    library = tmp_path / "library"
    library.mkdir()
    private = tmp_path / "private"
    private.mkdir()
    secret = private / "secret.jpg"
    Image.new("RGB", (4, 4)).save(secret)
    app = _app(indexing_mod.register_indexing_routes, _deps(services))

    for outside in (str(secret), "../private/secret.jpg"):
        payload = await _post(app, "/photoglobe/index/start", {"root_path": str(library), "mode": "delta", key: [outside]})
        assert payload["ok"] is False
        assert payload["code"] == "INVALID_INPUT"

    assert services["coordinator"].list_jobs() == []
    assert (await services["photos"].get_by_path(str(secret))).data is None
    assert (await services["roots"].find_by_path(str(library))).data is None
