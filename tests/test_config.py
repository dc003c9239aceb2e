"""Tests for configuration defaults, validation and merging."""

import argparse
import json
import os

import pytest

from imagegen.config import DEFAULT_BACKGROUND_COLOR, Config, load_and_merge_config, load_config_from_file


def test_defaults(www):
    config = Config(root_dir=str(www))
    assert config.root_dir == str(www)
    assert config.cache_dir == os.path.join(str(www), "_cache")
    assert config.crop_points[480] == (910, 30, 1845, 1150)
    assert config.deduplicate == (os.name == "nt")


def test_invalid_values_are_corrected(www):
    config = Config(
        root_dir=str(www),
        base_url="https://example.com///",
        default_background_color=(300, 0, 0),
        optimizer="bogus",
        jpeg_quality=0,
        wait_attempts=-1,
        crop_points={"768": ["1", 2, 3, 4], "bad": [1, 2]},
    )
    assert config.base_url == "https://example.com"
    assert config.default_background_color == DEFAULT_BACKGROUND_COLOR
    assert config.optimizer == "shell"
    assert config.jpeg_quality == 95
    assert config.wait_attempts == 0
    assert config.crop_points == {768: (1, 2, 3, 4)}


def test_missing_or_broken_file(tmp_path):
    assert load_config_from_file(str(tmp_path / "missing.json")) == {}
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_config_from_file(str(broken)) == {}


@pytest.mark.parametrize("content", ["[1, 2, 3]", "\"root_dir\"", "42", "null"])
def test_non_object_file_is_ignored(tmp_path, content):
    config_file = tmp_path / "imagegen.json"
    config_file.write_text(content)
    assert load_config_from_file(str(config_file)) == {}


def test_list_file_falls_back_to_defaults(tmp_path, www):
    config_file = tmp_path / "imagegen.json"
    config_file.write_text(json.dumps([{"root_dir": "/elsewhere"}]))
    args = argparse.Namespace(config=str(config_file), root_dir=str(www))
    config = load_and_merge_config(args, ["root_dir"])
    assert config.root_dir == str(www)
    assert config.wait_attempts == Config(root_dir=str(www)).wait_attempts


def test_command_line_overrides_file(tmp_path, www):
    config_file = tmp_path / "imagegen.json"
    config_file.write_text(json.dumps({
        "root_dir": str(www),
        "base_url": "https://file.example.com",
        "debug_mode": True,
        "wait_attempts": 3,
        "unknown": 1,
    }))
    args = argparse.Namespace(config=str(config_file), root_dir=None, base_url="https://cli.example.com", debug_mode=False)

    config = load_and_merge_config(args, ["root_dir", "base_url", "debug_mode"])
    assert config.root_dir == str(www)
    assert config.base_url == "https://cli.example.com"
    assert config.debug_mode is True
    assert config.wait_attempts == 3
