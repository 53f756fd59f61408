import os

from photoglobe_backend.path_utils import (
    dedupe_paths,
    is_under_path,
    merge_recent_roots,
    normalize_fs_path,
    paths_under_root,
)


def test_normalize_fs_path_collapses_separators_and_dots():
    assert normalize_fs_path("") == ""
    assert normalize_fs_path("   ") == ""
    assert normalize_fs_path("/a//b/./c/../d") == os.path.normcase(os.path.normpath("/a/b/d"))


def test_dedupe_paths_keeps_first_seen_order():
    assert dedupe_paths(["/b", "/a", "/b/", "", "/a/./"]) == [normalize_fs_path("/b"), normalize_fs_path("/a")]


def test_merge_recent_roots_moves_root_to_front_and_caps():
    merged = merge_recent_roots(["/a", "/b", "/c"], "/c", limit=2)
    assert merged == [normalize_fs_path("/c"), normalize_fs_path("/a")]


def test_is_under_path():
    root = normalize_fs_path("/library")
    assert is_under_path(normalize_fs_path("/library/sub/a.jpg"), root) is True
    assert is_under_path(root, root) is True
    assert is_under_path(normalize_fs_path("/library2/a.jpg"), root) is False
    assert is_under_path("", root) is False


def test_paths_under_root_resolves_relative_and_drops_escapes():
    values = [
        "trip/a.jpg",
        "/library/trip/a.jpg",
        "/library/b.jpg",
        "../private/secret.jpg",
        "/library/../private/secret.jpg",
        "/library-2/c.jpg",
        "/library",
        "  ",
    ]
    assert paths_under_root(values, "/library/") == [
        normalize_fs_path("/library/trip/a.jpg"),
        normalize_fs_path("/library/b.jpg"),
    ]
    assert paths_under_root(["a.jpg"], "") == []
