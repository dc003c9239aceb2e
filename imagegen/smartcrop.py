# -*- coding: utf-8 -*-
import os
import logging
import subprocess
from typing import Optional, Sequence

from imagegen.errors import TransformError

logger = logging.getLogger(__name__)

FAILURE_MARKERS = ('Error', 'Exception')


class SmartCrop:
    """Runs the external ``smartcrop`` binary in place on a workspace file."""

    def __init__(self, candidate_paths: Sequence[str], timeout: Optional[float] = 60.0):
        self.candidate_paths = tuple(candidate_paths)
        self.timeout = timeout

    def find_binary(self) -> Optional[str]:
        for path in self.candidate_paths:
            try:
                if os.path.isfile(path):
                    return path
            except OSError:
                # may not have permissions to stat it
                continue
        return None

    def try_smart_crop(self, path: str, width: int, height: int) -> bool:
        """Returns False when no binary is installed, so the caller can fall back to a center crop."""
        binary = self.find_binary()
        if binary is None:
            logger.debug("SmartCrop binary not found. Falling back to center crop.")
            return False

        command = [binary, path, '--width', str(width), '--height', str(height), path]
        try:
            process = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransformError(f"SmartCrop unable to generate image: {e}") from e

        output = (process.stdout or '') + (process.stderr or '')
        if any(marker in output for marker in FAILURE_MARKERS):
            logger.error(f"SmartCrop failed for '{os.path.basename(path)}':\n{output.strip()}")
            raise TransformError('SmartCrop unable to generate image.')

        logger.debug(f"SmartCrop processed '{os.path.basename(path)}' to {width}x{height}")
        return True
