import os

import pytest

from photoglobe_backend.features.index import scanner as s
from photoglobe_backend.path_utils import normalize_fs_path


def _touch(path, payload=b"data"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "library"
    _touch(root / "a.jpg", b"12345")
    _touch(root / "clip.MP4")
    _touch(root / "notes.txt")
    _touch(root / "sub" / "deep" / "b.png")
    _touch(root / ".cache" / "hidden.jpg")
    _touch(root / "$RECYCLE.BIN" / "trash.jpg")
    _touch(root / "System Volume Information" / "x.jpg")
    _touch(root / ".dotfile.jpg")
    return root


def test_is_ignored_name():
    assert s.is_ignored_name(".git") is True
    assert s.is_ignored_name("$Recycle.Bin") is True
    assert s.is_ignored_name("") is True
    assert s.is_ignored_name("Holidays") is False


@pytest.mark.asyncio
async def test_scan_lists_supported_media_and_skips_hidden(library):
    files = await s.scan_media_files(str(library))

    paths = [f.path for f in files]
    assert paths == sorted(
        [
            normalize_fs_path(str(library / "a.jpg")),
            normalize_fs_path(str(library / "clip.MP4")),
            normalize_fs_path(str(library / "sub" / "deep" / "b.png")),
        ]
    )
    by_path = {f.path: f for f in files}
    photo = by_path[normalize_fs_path(str(library / "a.jpg"))]
    assert photo.size_bytes == 5
    assert photo.media_type == "photo"
    assert photo.mime == "image/jpeg"
    assert photo.mtime_ms == int(os.stat(library / "a.jpg").st_mtime_ns // 1_000_000)
    assert by_path[normalize_fs_path(str(library / "clip.MP4"))].media_type == "video"


@pytest.mark.asyncio
async def test_scan_missing_root_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        await s.scan_media_files(str(tmp_path / "missing"))


@pytest.mark.asyncio
async def test_scan_specific_drops_missing_and_unsupported(library):
    scanner = s.MediaScanner()
    files = await scanner.scan_specific(
        [
            str(library / "a.jpg"),
            str(library / "a.jpg"),
            str(library / "gone.jpg"),
            str(library / "notes.txt"),
            str(library / "sub"),
        ]
    )
    assert [f.path for f in files] == [normalize_fs_path(str(library / "a.jpg"))]


def test_stat_media_file_rejects_directories_with_media_extension(tmp_path):
    odd = tmp_path / "folder.jpg"
    odd.mkdir()
    assert s.stat_media_file(str(odd)) is None
