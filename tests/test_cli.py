"""Tests for the command line entry point."""

import hashlib
import sys

import pytest
from PIL import Image

import image
from conftest import make_location


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["image.py", *argv])
    image.main()


def test_hash_command(monkeypatch, capsys):
    _run(monkeypatch, "hash", "ab")
    assert capsys.readouterr().out.strip() == hashlib.sha1(b"ab").hexdigest()[:6]


def test_hash_command_canonical(monkeypatch, capsys):
    _run(monkeypatch, "hash", "--canonical", "w5h100-cmc-scr")
    out = capsys.readouterr().out.strip()
    assert out.startswith("w16h100-scr-cmc_")
    assert len(out.rsplit("_", 1)[1]) == 6


def test_url_command(monkeypatch, capsys, www):
    _run(monkeypatch, "url", "/images/forest.jpg", "-w", "200", "-H", "100", "--scale", "c", "--root", str(www))
    location = make_location("images", "forest", "w200h100-scc")
    assert capsys.readouterr().out.strip() == f"/images/{location.file_name}"


def test_generate_command(monkeypatch, tmp_path, www, forest):
    output = tmp_path / "out.jpg"
    location = make_location("images", "forest", "w120h80-scc")
    with pytest.raises(SystemExit) as e:
        _run(monkeypatch, "generate", f"images/{location.file_name}", "-o", str(output),
             "--root", str(www), "--optimizer", "none")
    assert e.value.code == 0
    with Image.open(output) as img:
        assert img.size == (120, 80)


def test_generate_command_placeholder_exit_code(monkeypatch, tmp_path, www):
    output = tmp_path / "out.png"
    location = make_location("images", "missing", "w120h80")
    with pytest.raises(SystemExit) as e:
        _run(monkeypatch, "generate", f"images/{location.file_name}", "-o", str(output), "--root", str(www))
    assert e.value.code == 1
    assert output.read_bytes().startswith(b"\x89PNG")


def test_invalidate_command(monkeypatch, capsys, www, forest):
    cached = www / "_cache" / "images" / "forest__w100h100_abcdef.jpg"
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"x")

    _run(monkeypatch, "invalidate", "images/forest.jpg", "--root", str(www), "--no-progress")
    assert "Removed 1 cached file(s)." in capsys.readouterr().out
    assert not cached.exists()
