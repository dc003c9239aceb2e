# -*- coding: utf-8 -*-
import os
import shutil
import logging
import subprocess
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from imagegen.config import Config

logger = logging.getLogger(__name__)

LARGE_AREA_THRESHOLD: int = 479999
LARGE_AREA_QUALITY: int = 85
DEFAULT_QUALITY: int = 95


def quality_for_area(area: int) -> int:
    return LARGE_AREA_QUALITY if area > LARGE_AREA_THRESHOLD else DEFAULT_QUALITY


class Optimizer:
    """Best-effort in-place file size optimisation. Never raises."""

    def optimize(self, path: str, quality: int = LARGE_AREA_QUALITY):
        raise NotImplementedError


class NullOptimizer(Optimizer):

    def optimize(self, path: str, quality: int = LARGE_AREA_QUALITY):
        return None


class ShellOptimizer(Optimizer):
    """Runs ``jpegoptim`` for JPEG files and ``optipng`` for PNG files when they are installed."""

    def _command(self, path: str, quality: int) -> Optional[List[str]]:
        extension = os.path.splitext(path)[1].lower()
        if extension in ('.jpg', '.jpeg'):
            return ['jpegoptim', '-s', '-f', f"-m{quality}", path]
        if extension == '.png':
            return ['optipng', '-o2', path]
        return None

    def optimize(self, path: str, quality: int = LARGE_AREA_QUALITY):
        command = self._command(path, quality)
        if command is None:
            return
        if shutil.which(command[0]) is None:
            logger.debug(f"Optimizer '{command[0]}' is not installed. Skipping '{os.path.basename(path)}'.")
            return
        try:
            process = subprocess.run(command, capture_output=True, text=True, encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Optimizer '{command[0]}' could not be started: {e}")
            return
        if process.returncode != 0:
            logger.warning(f"Optimizer '{command[0]}' exited with {process.returncode} for '{os.path.basename(path)}': {process.stderr.strip()}")


class PillowOptimizer(Optimizer):
    """Re-saves the file with Pillow's optimizing encoder settings."""

    def optimize(self, path: str, quality: int = LARGE_AREA_QUALITY):
        extension = os.path.splitext(path)[1].lower()
        save_options = {}
        if extension in ('.jpg', '.jpeg'):
            save_options.update({"quality": quality, "optimize": True, "progressive": True})
        elif extension == '.png':
            save_options.update({"optimize": True, "compress_level": 9})
        else:
            return

        try:
            with Image.open(path) as img:
                img.load()
                output_format = img.format
                optimized = img.copy()
            optimized.save(path, format=output_format, **save_options)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning(f"Error occurred during image optimization of '{os.path.basename(path)}': {e}")


def create_optimizer(config: Config) -> Optimizer:
    if config.optimizer == 'pillow':
        return PillowOptimizer()
    if config.optimizer == 'none':
        return NullOptimizer()
    return ShellOptimizer()
