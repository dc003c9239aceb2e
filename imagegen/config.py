# -*- coding: utf-8 -*-
import os
import json
import logging
import argparse
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple, List

log_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(processName)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

log_handler = logging.StreamHandler()
log_handler.setFormatter(log_formatter)

logger = logging.getLogger("imagegen")
if not logger.hasHandlers():
    logger.addHandler(log_handler)
    logger.setLevel(logging.WARNING)

DEFAULT_BACKGROUND_COLOR: Tuple[int, int, int] = (255, 255, 255)

DEFAULT_CROP_POINTS: Dict[int, Tuple[int, int, int, int]] = {
    480: (910, 30, 1845, 1150),
    600: (875, 95, 1710, 910),
    768: (975, 130, 1743, 660),
    1024: (805, 110, 1829, 850),
    1280: (615, 63, 1895, 800),
    1440: (535, 63, 1975, 800),
    1680: (410, 63, 2090, 800),
    1920: (320, 63, 2240, 800),
    2560: (0, 63, 2560, 800),
}

DEFAULT_SMARTCROP_PATHS: Tuple[str, ...] = (
    '/usr/bin/smartcrop',
    '/usr/sbin/smartcrop',
    '/usr/local/node/bin/smartcrop',
)

DEFAULT_USER_AGENT: str = (
    'Mozilla/5.0 (Windows NT 6.1) AppleWebKit/537.11 '
    '(KHTML, like Gecko) Chrome/23.0.1271.1 Safari/537.11'
)

OPTIMIZER_CHOICES: Tuple[str, ...] = ('shell', 'pillow', 'none')


@dataclass
class Config:
    """
    Process-wide settings for the image generator.

    Built once (defaults, then JSON file, then command line) and passed to
    every component that needs it. Nothing in the package keeps its own
    global copy of these values.
    """
    root_dir: str = "www"
    base_url: Optional[str] = None
    debug_mode: bool = False
    is_localhost: bool = False
    default_background_color: Tuple[int, int, int] = DEFAULT_BACKGROUND_COLOR
    crop_points: Dict[int, Tuple[int, int, int, int]] = field(default_factory=lambda: dict(DEFAULT_CROP_POINTS))
    deduplicate: bool = field(default_factory=lambda: os.name == 'nt')
    optimizer: str = 'shell'  # ['shell', 'pillow', 'none']
    jpeg_quality: int = 95
    wait_attempts: int = 5
    wait_interval: float = 1.0
    stale_after: float = 30.0
    fetch_timeout: float = 2.0
    fetch_min_bytes: int = 20
    fetch_user_agent: str = DEFAULT_USER_AGENT
    fetch_verify_tls: bool = True
    smartcrop_paths: Tuple[str, ...] = DEFAULT_SMARTCROP_PATHS
    verbose: bool = False

    def __post_init__(self):
        self.root_dir = os.path.abspath(self.root_dir)
        if self.base_url:
            self.base_url = self.base_url.rstrip('/')

        color = tuple(self.default_background_color or ())
        if len(color) != 3 or not all(isinstance(c, int) and 0 <= c <= 255 for c in color):
            logger.warning(f"Background color must be an RGB triple of 0-255 integers ({self.default_background_color!r}). Using white.")
            color = DEFAULT_BACKGROUND_COLOR
        self.default_background_color = color

        # JSON object keys arrive as strings.
        points = {}
        for breakpoint, rectangle in (self.crop_points or {}).items():
            try:
                x1, y1, x2, y2 = (int(v) for v in rectangle)
                points[int(breakpoint)] = (x1, y1, x2, y2)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid crop point {breakpoint!r}: {rectangle!r}. Expected four integers.")
        self.crop_points = points

        if self.optimizer not in OPTIMIZER_CHOICES:
            logger.warning(f"Unknown optimizer '{self.optimizer}'. Setting to 'shell'.")
            self.optimizer = 'shell'
        if not (1 <= self.jpeg_quality <= 100):
            logger.warning(f"JPEG quality must be between 1 and 100 ({self.jpeg_quality}). Setting to 95.")
            self.jpeg_quality = 95
        if self.wait_attempts < 0:
            logger.warning(f"Wait attempts must be >= 0 ({self.wait_attempts}). Setting to 0.")
            self.wait_attempts = 0
        if self.wait_interval < 0:
            logger.warning(f"Wait interval must be >= 0 ({self.wait_interval}). Setting to 0.")
            self.wait_interval = 0.0
        self.smartcrop_paths = tuple(self.smartcrop_paths)

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.root_dir, '_cache')


def setup_logging(level: int):
    logger.setLevel(level)
    logger.debug(f"Logging level set to {logging.getLevelName(level)}")


def load_config_from_file(config_path: str) -> Dict[str, Any]:
    """Reads the JSON settings object at ``config_path``; anything unusable yields ``{}``."""
    path = os.path.abspath(config_path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.error(f"Config file '{path}' does not exist. Using defaults.")
        return {}
    except (OSError, ValueError) as e:
        logger.error(f"Config file '{path}' could not be read: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Config file '{path}' must hold a JSON object, got {type(data).__name__}. Using defaults.")
        return {}
    logger.info(f"Loaded {len(data)} setting(s) from '{path}'")
    return data


def load_and_merge_config(args: argparse.Namespace, cli_keys: Optional[List[str]] = None) -> Config:
    """Starts from the dataclass defaults, merges the JSON config file, then explicit command-line values."""
    config_values: Dict[str, Any] = {}

    config_path = getattr(args, 'config', None)
    if config_path:
        for key, value in load_config_from_file(config_path).items():
            if key in Config.__dataclass_fields__:
                config_values[key] = value
            else:
                logger.warning(f"Unknown key '{key}' in configuration file '{config_path}' ignored.")

    for key in cli_keys or list(Config.__dataclass_fields__):
        value = getattr(args, key, None)
        # store_true flags are False when not given, so only a True value overrides the file.
        if value is not None and value is not False:
            config_values[key] = value

    return Config(**config_values)
