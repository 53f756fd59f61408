import json
import subprocess

import pytest

from photoglobe_backend.adapters.tools import exiftool as et


@pytest.fixture
def tool(tmp_path):
    fake_bin = tmp_path / "exiftool"
    fake_bin.write_text("#!/bin/sh\n")
    return et.ExifTool(bin_name=str(fake_bin), timeout=5)


def _completed(cmd, returncode=0, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


def test_missing_binary_is_unavailable(tmp_path):
    tool = et.ExifTool(bin_name=str(tmp_path / "nope"))
    assert tool.is_available() is False
    res = tool.read(str(tmp_path / "a.jpg"))
    assert res.ok is False
    assert res.code == "TOOL_MISSING"


def test_unsafe_binary_name_is_rejected():
    assert et.ExifTool(bin_name="exiftool; rm -rf /").is_available() is False


def test_read_parses_first_json_object(tool, monkeypatch):
    captured = {}

    def _run(cmd, **kwargs):
        captured["cmd"] = cmd
        captured["kwargs"] = kwargs
        return _completed(cmd, stdout=json.dumps([{"SourceFile": "a.jpg", "GPSLatitude": 1.5}]).encode())

    monkeypatch.setattr(et.subprocess, "run", _run)
    res = tool.read("/library/a.jpg", fast=True)

    assert res.ok
    assert res.data["GPSLatitude"] == 1.5
    cmd = captured["cmd"]
    assert cmd[:4] == [tool.bin, "-j", "-n", "-s"]
    assert "-fast2" in cmd
    assert "-DateTimeOriginal" in cmd
    assert cmd[-2:] == ["--", "/library/a.jpg"]
    assert captured["kwargs"]["shell"] is False
    assert captured["kwargs"]["timeout"] == 5


def test_full_read_has_no_fast_flag(tool, monkeypatch):
    seen = []

    def _run(cmd, **kwargs):
        seen.append(cmd)
        return _completed(cmd, stdout=b'[{"Model": "EOS"}]')

    monkeypatch.setattr(et.subprocess, "run", _run)
    assert tool.read("/library/a.cr3").data == {"Model": "EOS"}
    assert "-fast2" not in seen[0]


def test_nonzero_exit_is_exiftool_error(tool, monkeypatch):
    monkeypatch.setattr(et.subprocess, "run", lambda cmd, **kw: _completed(cmd, 1, stderr=b"File not found"))
    res = tool.read("/library/a.jpg")
    assert res.code == "EXIFTOOL_ERROR"
    assert res.error == "File not found"
    assert res.meta["return_code"] == 1


@pytest.mark.parametrize("stdout", [b"", b"not json", b"[]", b'{"a": 1}'])
def test_bad_output_is_parse_error(tool, monkeypatch, stdout):
    monkeypatch.setattr(et.subprocess, "run", lambda cmd, **kw: _completed(cmd, stdout=stdout))
    assert tool.read("/library/a.jpg").code == "PARSE_ERROR"


def test_timeout_is_reported(tool, monkeypatch):
    def _run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(et.subprocess, "run", _run)
    assert tool.read("/library/a.jpg").code == "TIMEOUT"


def test_spawn_failure_is_reported(tool, monkeypatch):
    def _run(cmd, **kwargs):
        raise PermissionError("not executable")

    monkeypatch.setattr(et.subprocess, "run", _run)
    res = tool.read("/library/a.jpg")
    assert res.code == "EXIFTOOL_ERROR"


def test_invalid_path_is_rejected(tool):
    assert tool.read("").code == "INVALID_INPUT"
    assert tool.read("a\x00b").code == "INVALID_INPUT"


def test_decode_bytes_best_effort():
    assert et._decode_bytes_best_effort(None) == ""
    assert et._decode_bytes_best_effort("café".encode("utf-8")) == "café"
    assert et._decode_bytes_best_effort("café".encode("cp1252")) == "café"


@pytest.mark.asyncio
async def test_aread_runs_in_thread(tool, monkeypatch):
    monkeypatch.setattr(et.subprocess, "run", lambda cmd, **kw: _completed(cmd, stdout=b'[{"ImageWidth": 8}]'))
    res = await tool.aread("/library/a.jpg", fast=True)
    assert res.data == {"ImageWidth": 8}
