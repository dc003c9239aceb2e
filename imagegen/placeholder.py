# -*- coding: utf-8 -*-
import io
import re
import logging
import textwrap
import unicodedata
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

PLACEHOLDER_MIN_SIZE: int = 64
PLACEHOLDER_DEFAULT_SIZE: int = 300
PLACEHOLDER_MAX_LINES: int = 30

BACKGROUND_BGR: Tuple[int, int, int] = (187, 187, 187)
TEXT_BGR: Tuple[int, int, int] = (0, 0, 0)

_SIZE_RE = re.compile(r'^(?:w(?P<width>\d+))?(?:h(?P<height>\d+))?')


def placeholder_size(params: str) -> Tuple[int, int]:
    match = _SIZE_RE.match(params or '')
    width = int(match.group('width')) if match and match.group('width') else PLACEHOLDER_DEFAULT_SIZE
    height = int(match.group('height')) if match and match.group('height') else PLACEHOLDER_DEFAULT_SIZE
    return max(width, PLACEHOLDER_MIN_SIZE), max(height, PLACEHOLDER_MIN_SIZE)


def _to_ascii(message: str) -> str:
    return unicodedata.normalize('NFKD', message).encode('ascii', 'ignore').decode('ascii')


def _put_centered(canvas: np.ndarray, text: str, y: int, scale: float, thickness: int = 1) -> int:
    font = cv2.FONT_HERSHEY_SIMPLEX
    (text_w, text_h), _ = cv2.getTextSize(text, font, scale, thickness)
    x = max(0, (canvas.shape[1] - text_w) // 2)
    cv2.putText(canvas, text, (x, y), font, scale, TEXT_BGR, thickness, cv2.LINE_AA)
    return text_h


def render_placeholder(params: str, message: Optional[str] = None, debug: bool = False) -> bytes:
    """
    Renders a grey PNG of the requested size (at least 64x64) with its size
    written in the middle. In debug mode ``message`` is printed into the image.
    """
    width, height = placeholder_size(params)
    canvas = np.full((height, width, 3), BACKGROUND_BGR, dtype=np.uint8)

    scale = max(0.3, min(1.0, width / 240))
    label = f"{width}x{height}"
    center_y = height // 2

    if message is not None and debug:
        _put_centered(canvas, label, max(12, center_y - 20), scale)
        line_length = max(1, int(width / 7))
        lines = textwrap.wrap(_to_ascii(message), width=line_length)[:PLACEHOLDER_MAX_LINES]
        for i, line in enumerate(lines):
            cv2.putText(canvas, line, (8, center_y + i * 15), cv2.FONT_HERSHEY_PLAIN, 0.8, TEXT_BGR, 1, cv2.LINE_AA)
    else:
        text_h = _put_centered(canvas, label, center_y, scale, 2 if scale >= 0.6 else 1)
        _put_centered(canvas, "Image generator", center_y + text_h + 10, scale * 0.6)

    rgb = cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB)
    buffer = io.BytesIO()
    Image.fromarray(rgb).save(buffer, format='PNG')
    logger.debug(f"Placeholder {width}x{height} rendered ({'debug' if debug else 'plain'})")
    return buffer.getvalue()
