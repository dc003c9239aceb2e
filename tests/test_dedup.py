"""Tests for the content-hash deduplication index."""

import os

from imagegen.dedup import DedupIndex, file_md5, sidecar_path


def _write(path, content):
    path.write_bytes(content)
    return str(path)


def test_first_file_gets_sidecar(tmp_path):
    first = _write(tmp_path / "a__w100h100_aaaaaa.jpg", b"same bytes")
    assert DedupIndex().finalize(first) == first
    assert os.path.isfile(sidecar_path(first, file_md5(first)))


def test_duplicate_becomes_relative_symlink(tmp_path):
    index = DedupIndex()
    first = _write(tmp_path / "a__w100h100_aaaaaa.jpg", b"same bytes")
    second = _write(tmp_path / "a__w200h200_bbbbbb.jpg", b"same bytes")
    index.finalize(first)

    assert index.finalize(second) == first
    assert os.path.islink(second)
    assert os.readlink(second) == "a__w100h100_aaaaaa.jpg"
    with open(second, "rb") as f:
        assert f.read() == b"same bytes"
    assert sorted(name for name in os.listdir(tmp_path) if name.endswith(".md5")) == [
        os.path.basename(sidecar_path(first, file_md5(first)))
    ]


def test_distinct_content_is_kept(tmp_path):
    index = DedupIndex()
    first = _write(tmp_path / "a.jpg", b"one")
    second = _write(tmp_path / "b.jpg", b"two")
    index.finalize(first)

    assert index.finalize(second) == second
    assert not os.path.islink(second)
    assert len([name for name in os.listdir(tmp_path) if name.endswith(".md5")]) == 2


def test_finalize_is_repeatable(tmp_path):
    index = DedupIndex()
    first = _write(tmp_path / "a.jpg", b"one")
    index.finalize(first)
    assert index.finalize(first) == first
    assert len(os.listdir(tmp_path)) == 2


def test_failed_link_keeps_the_duplicate(tmp_path, monkeypatch):
    index = DedupIndex()
    first = _write(tmp_path / "a__w100h100_aaaaaa.jpg", b"same bytes")
    second = _write(tmp_path / "a__w200h200_bbbbbb.jpg", b"same bytes")
    index.finalize(first)

    def no_symlinks(src, dst):
        raise OSError("symlinks not supported")

    monkeypatch.setattr(os, "symlink", no_symlinks)

    assert index.finalize(second) == second
    assert not os.path.islink(second)
    with open(second, "rb") as f:
        assert f.read() == b"same bytes"
    assert os.path.isfile(sidecar_path(second, file_md5(second)))
    assert not [name for name in os.listdir(tmp_path) if name.endswith(".link")]


def test_failed_swap_leaves_no_stray_link(tmp_path, monkeypatch):
    index = DedupIndex()
    first = _write(tmp_path / "a.jpg", b"same bytes")
    second = _write(tmp_path / "b.jpg", b"same bytes")
    index.finalize(first)

    def no_replace(src, dst):
        raise OSError("read-only")

    monkeypatch.setattr(os, "replace", no_replace)

    assert index.finalize(second) == second
    assert os.path.isfile(second) and not os.path.islink(second)
    assert not [name for name in os.listdir(tmp_path) if name.endswith(".link")]
