"""Shared test fixtures."""

import os

import pytest
from PIL import Image

from imagegen.config import Config
from imagegen.params import verification_hash
from imagegen.paths import CacheLocation


def make_location(dirname: str, basename: str, params: str, extension: str = 'jpg', hash: str = None) -> CacheLocation:
    return CacheLocation(
        dirname=dirname,
        basename=basename,
        params=params,
        hash=hash if hash is not None else verification_hash(params),
        extension=extension,
    )


def write_image(path, size=(1000, 500), color=(200, 30, 30), mode='RGB', fmt=None, split_color=None) -> str:
    """Writes a solid image; with ``split_color`` the right half gets that color instead."""
    path = str(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    img = Image.new(mode, size, color)
    if split_color is not None:
        half = Image.new(mode, (size[0] - size[0] // 2, size[1]), split_color)
        img.paste(half, (size[0] // 2, 0))
    img.save(path, format=fmt)
    return path


@pytest.fixture
def www(tmp_path):
    root = tmp_path / "www"
    root.mkdir()
    return root


@pytest.fixture
def config(www):
    return Config(
        root_dir=str(www),
        optimizer='none',
        wait_attempts=2,
        wait_interval=0.0,
        deduplicate=False,
    )


@pytest.fixture
def forest(www):
    return write_image(www / "images" / "forest.jpg")
