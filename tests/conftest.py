import sys

import pytest_asyncio

from .repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest_asyncio.fixture
async def db(tmp_path):
    from photoglobe_backend.adapters.db import Sqlite, migrate_schema

    sqlite = Sqlite(str(tmp_path / "catalog.sqlite"))
    res = await migrate_schema(sqlite)
    assert res.ok, res.error
    try:
        yield sqlite
    finally:
        await sqlite.aclose()


@pytest_asyncio.fixture
async def services(tmp_path, monkeypatch):
    from photoglobe_backend import deps as deps_mod
    from photoglobe_backend.adapters.tools import ExifTool

    monkeypatch.setattr(deps_mod, "initialize_directories", lambda: None)
    missing_tool = ExifTool(bin_name=str(tmp_path / "no-such-exiftool"))
    svc_res = await deps_mod.build_services(str(tmp_path / "test_services.sqlite"), exiftool=missing_tool)
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        await deps_mod.dispose_services(svc)
