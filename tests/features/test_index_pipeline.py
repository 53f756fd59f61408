import asyncio

import pytest
from PIL import Image

from photoglobe_backend import deps as deps_mod
from photoglobe_backend.features.index.types import IndexPhase, WatcherDelta
from photoglobe_backend.path_utils import normalize_fs_path


def _library(tmp_path):
    root = tmp_path / "library"
    (root / "trip").mkdir(parents=True)
    Image.new("RGB", (6, 4)).save(root / "trip" / "beach.jpg")
    (root / "clip.mp4").write_bytes(b"\x00" * 16)
    (root / "readme.txt").write_text("not media")
    return root


@pytest.mark.asyncio
async def test_build_services_exposes_every_component(services):
    assert set(services) >= {
        "db", "exiftool", "photos", "roots", "settings", "extractor", "coordinator", "enricher", "watcher",
    }
    assert services["enricher"] is services["coordinator"].enricher
    assert services["exiftool"].is_available() is False


@pytest.mark.asyncio
async def test_full_scan_then_rescan_tombstones_removed_file(services, tmp_path):
    root = _library(tmp_path)
    coordinator = services["coordinator"]
    photos = services["photos"]

    status = await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)
    assert status.phase is IndexPhase.COMPLETE, status.message
    assert (status.scanned, status.queued, status.indexed, status.errored) == (2, 2, 1, 1)
    await asyncio.wait_for(coordinator.enricher.wait_idle(), timeout=30)

    root_rec = (await services["roots"].find_by_path(str(root))).data
    assert root_rec.last_scan_at_ms is not None
    beach = (await photos.get_by_path(str(root / "trip" / "beach.jpg"))).data
    assert (beach["width"], beach["height"]) == (6, 4)
    assert beach["media_type"] == "photo"
    clip = (await photos.get_by_path(str(root / "clip.mp4"))).data
    assert clip["media_type"] == "video"
    assert clip["last_error"]

    status = await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)
    assert (status.queued, status.skipped) == (0, 2)

    (root / "trip" / "beach.jpg").unlink()
    status = await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)
    assert status.phase is IndexPhase.COMPLETE
    assert (await photos.count_by_root(root_rec.id)).data == 1
    assert (await photos.count_by_root(root_rec.id, include_deleted=True)).data == 2
    assert await services["settings"].get_recent_roots() == [normalize_fs_path(str(root))]


@pytest.mark.asyncio
async def test_delta_job_restores_file_put_back(services, tmp_path):
    root = _library(tmp_path)
    coordinator = services["coordinator"]
    photos = services["photos"]
    beach = root / "trip" / "beach.jpg"
    await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)

    backup = beach.read_bytes()
    beach.unlink()
    delta = WatcherDelta(root_path=str(root), removed_paths=(str(beach),))
    status = await coordinator.wait_for_job(coordinator.start_delta(str(root), delta), timeout=30)
    assert status.mode == "delta"
    assert (await photos.get_by_path(str(beach))).data["is_deleted"] == 1

    beach.write_bytes(backup)
    delta = WatcherDelta(root_path=str(root), added_or_changed_paths=(str(beach),))
    status = await coordinator.wait_for_job(coordinator.start_delta(str(root), delta), timeout=30)
    assert status.phase is IndexPhase.COMPLETE
    assert status.scanned == 1
    assert (await photos.get_by_path(str(beach))).data["is_deleted"] == 0
    await asyncio.wait_for(coordinator.enricher.wait_idle(), timeout=30)


@pytest.mark.asyncio
async def test_bootstrap_scans_roots_never_scanned(services, tmp_path):
    root = _library(tmp_path)
    await services["roots"].ensure(str(root))
    await services["settings"].set_watch_enabled(False)

    task = await deps_mod.bootstrap_services(services)
    assert task is not None
    await asyncio.wait_for(task, timeout=30)

    root_rec = (await services["roots"].find_by_path(str(root))).data
    assert root_rec.last_scan_at_ms is not None
    assert await services["settings"].get_active_roots() == [normalize_fs_path(str(root))]
    assert services["watcher"].watched_roots == []

    assert await deps_mod.bootstrap_services(services) is None


@pytest.mark.asyncio
async def test_watcher_callback_routes_overflow_to_full_rescan():
    calls = []

    class _Coordinator:
        def start_full(self, root_path):
            calls.append(("full", root_path))

        def start_delta(self, root_path, delta):
            calls.append(("delta", root_path))

    on_change = deps_mod._watcher_callback(_Coordinator())
    on_change(WatcherDelta(root_path="/library", overflow=True))
    on_change(WatcherDelta(root_path="/library", added_or_changed_paths=("/library/a.jpg",)))
    assert calls == [("full", "/library"), ("delta", "/library")]


@pytest.mark.asyncio
async def test_delta_never_catalogs_files_outside_root(services, tmp_path):
    root = _library(tmp_path)
    private = tmp_path / "private"
    private.mkdir()
    secret = private / "secret.jpg"
    Image.new("RGB", (3, 3)).save(secret)
    coordinator = services["coordinator"]
    photos = services["photos"]
    await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)
    root_rec = (await services["roots"].find_by_path(str(root))).data

    delta = WatcherDelta(root_path=str(root), added_or_changed_paths=(str(secret),))
    status = await coordinator.wait_for_job(coordinator.start_delta(str(root), delta), timeout=30)
    assert status.phase is IndexPhase.COMPLETE
    assert (status.scanned, status.indexed, status.errored) == (0, 0, 0)
    assert (await photos.get_by_path(str(secret))).data is None

    status = await coordinator.wait_for_job(coordinator.start_full(str(root)), timeout=30)
    assert status.phase is IndexPhase.COMPLETE
    assert (await photos.count_by_root(root_rec.id, include_deleted=True)).data == 2
    await asyncio.wait_for(coordinator.enricher.wait_idle(), timeout=30)
