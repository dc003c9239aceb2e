# -*- coding: utf-8 -*-
import os
import logging
from dataclasses import dataclass
from typing import Dict, Tuple, Optional, Callable, Iterable

from PIL import Image, UnidentifiedImageError

from imagegen.config import Config
from imagegen.errors import InvalidRequestError, TransformError
from imagegen.params import TransformRequest, CORNER_RE, CROP_SMART, SCALE_RATIO, SCALE_COVER, SCALE_ABSOLUTE, round_half_up

logger = logging.getLogger(__name__)

RESAMPLE_FILTER = Image.Resampling.LANCZOS

FORMAT_BY_EXTENSION: Dict[str, str] = {
    '.jpg': 'JPEG',
    '.jpeg': 'JPEG',
    '.png': 'PNG',
    '.gif': 'GIF',
}
SUPPORTED_FORMATS: Tuple[str, ...] = ('JPEG', 'PNG', 'GIF')

RATIO_UPSCALE_LIMIT: float = 1.3


Size = Tuple[Optional[int], Optional[int]]


@dataclass(frozen=True)
class CropGeometry:
    width: int
    height: int
    ratio: float


def format_for_path(path: str) -> str:
    extension = os.path.splitext(path)[1].lower()
    try:
        return FORMAT_BY_EXTENSION[extension]
    except KeyError:
        raise TransformError(f"Format \"{extension.lstrip('.')}\" is not supported. Did you mean \"jpg\", \"png\", \"gif\"?") from None


def is_valid_image(path: str, expected_format: Optional[str] = None) -> bool:
    """Decode probe: the file must fully decode as a JPEG, PNG or GIF (and match ``expected_format`` if given)."""
    try:
        with Image.open(path) as img:
            if img.format not in SUPPORTED_FORMATS:
                return False
            if expected_format is not None and img.format != expected_format:
                return False
            img.load()
            return True
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        logger.debug(f"Image '{path}' failed the decode check: {e}")
        return False


def has_transparency(img: Image.Image) -> bool:
    if img.mode in ('RGBA', 'LA', 'PA'):
        return True
    return img.mode == 'P' and 'transparency' in img.info


def flatten_transparency(img: Image.Image, color: Tuple[int, int, int]) -> Image.Image:
    background = Image.new("RGB", img.size, tuple(color))
    rgba = img.convert("RGBA")
    background.paste(rgba, mask=rgba.split()[3])
    return background


def save_image(img: Image.Image, path: str, jpeg_quality: int = 95):
    output_format = format_for_path(path)
    save_kwargs = {}
    if output_format == 'JPEG':
        if img.mode not in ('RGB', 'L', 'CMYK'):
            img = img.convert('RGB')
        save_kwargs['quality'] = jpeg_quality
    try:
        img.save(path, format=output_format, **save_kwargs)
    except (OSError, ValueError) as e:
        raise TransformError(f"Image can not be saved to '{path}': {e}") from e


def normalize_workspace(path: str, background_color: Tuple[int, int, int], jpeg_quality: int = 95) -> bool:
    """
    Flattens transparency onto ``background_color`` and re-encodes the file
    into the format its extension names. Returns True if the file was rewritten.
    """
    expected_format = format_for_path(path)
    try:
        with Image.open(path) as img:
            translucent = has_transparency(img)
            if not translucent and img.format == expected_format:
                return False
            img.load()
            result = flatten_transparency(img, background_color) if translucent else img.copy()
    except (UnidentifiedImageError, OSError) as e:
        raise TransformError(f"Image '{path}' can not be loaded: {e}") from e

    logger.debug(f"Workspace '{os.path.basename(path)}' normalized (transparency flattened: {translucent}).")
    save_image(result, path, jpeg_quality)
    return True


def get_max_size_for_crop(original: Tuple[int, int], needle: Size) -> CropGeometry:
    """
    Finds the largest rectangle with the needle's aspect ratio that fits in the original.

    The needle grows by unit steps on its shorter side (and by ``ratio`` on the
    longer one) until one side reaches the original bound, then both sides are
    clamped. Published URLs depend on the exact rounding of this loop.
    """
    original_width, original_height = original
    needle_width, needle_height = needle

    if needle_width is None or needle_height is None:
        if needle_width is None and needle_height is not None:
            needle_ratio = original_width / original_height
            needle_width = int(needle_ratio * needle_height)
        elif needle_height is None and needle_width is not None:
            needle_ratio = original_height / original_width
            needle_height = int(needle_ratio * needle_width)
        else:
            raise InvalidRequestError('Needle size must define width or height, but none is defined.')
    else:
        needle_width_is_greater = needle_width > needle_height
        needle_ratio = (needle_width / needle_height) if needle_width_is_greater else (needle_height / needle_width)

        while needle_width < original_width and needle_height < original_height:
            if needle_width_is_greater:
                needle_width += needle_ratio
                needle_height += 1
            else:
                needle_height += needle_ratio
                needle_width += 1

    if needle_width > original_width:
        needle_width -= (needle_width - original_width)
    if needle_height > original_height:
        needle_height -= (needle_height - original_height)

    return CropGeometry(int(needle_width), int(needle_height), float(needle_ratio))


def select_breakpoint(width: int, breakpoints: Iterable[int]) -> int:
    """Returns the next breakpoint above ``width``, or the largest one when ``width`` is past all of them."""
    points = sorted([0] + list(breakpoints))
    for i, before in enumerate(points):
        if i + 1 >= len(points):
            return before
        after = points[i + 1]
        if before <= width < after:
            return after
    return points[-1]


def crop_by_breakpoint(img: Image.Image, width: int, crop_points: Dict[int, Tuple[int, int, int, int]]) -> Image.Image:
    if not crop_points:
        raise TransformError('Undefined breakpoint. Possible values: "0". Did you registered some points?')
    breakpoint = select_breakpoint(width, crop_points.keys())
    x1, y1, x2, y2 = crop_points[breakpoint]
    crop_width, crop_height = abs(x2 - x1), abs(y2 - y1)

    img_w, img_h = img.size
    box = (max(0, x1), max(0, y1), min(img_w, x1 + crop_width), min(img_h, y1 + crop_height))
    if box[0] >= box[2] or box[1] >= box[3]:
        raise TransformError(f"Breakpoint {breakpoint} crop area {crop_points[breakpoint]} is outside of the {img_w}x{img_h} image.")
    logger.debug(f"Breakpoint crop: width {width} -> breakpoint {breakpoint}, box {box}")
    return img.crop(box)


def scale_ratio(img: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
    original_width, original_height = img.size
    if width is None and height is None:
        raise InvalidRequestError('Needle scale size must define width or height, but none is defined.')
    if width is None:
        width = int(original_width / original_height * height)
    if height is None:
        height = int(original_height / original_width * width)

    within_limit = width / original_width < RATIO_UPSCALE_LIMIT and height / original_height < RATIO_UPSCALE_LIMIT
    identity = (width == original_width and height >= original_height) or (height == original_height and width >= original_width)
    if not within_limit or identity:
        logger.debug(f"Ratio scale skipped: ({original_width},{original_height}) -> ({width},{height})")
        return img

    scale = min(width / original_width, height / original_height)
    new_size = (max(1, round_half_up(original_width * scale)), max(1, round_half_up(original_height * scale)))
    if new_size == img.size:
        return img
    logger.debug(f"Resizing (ratio): ({original_width},{original_height}) -> {new_size}")
    return img.resize(new_size, RESAMPLE_FILTER)


def scale_cover(img: Image.Image, width: int, height: int) -> Image.Image:
    if (width, height) == img.size:
        return img
    logger.debug(f"Resizing (cover): {img.size} -> ({width},{height})")
    return img.resize((width, height), RESAMPLE_FILTER)


def scale_absolute(img: Image.Image, width: int, height: int) -> Image.Image:
    original_width, original_height = img.size
    new_size = (
        max(1, round_half_up(original_width * min(1, width / original_width))),
        max(1, round_half_up(original_height * min(1, height / original_height))),
    )
    if new_size == img.size:
        return img
    logger.debug(f"Resizing (absolute): ({original_width},{original_height}) -> {new_size}")
    return img.resize(new_size, RESAMPLE_FILTER)


def crop_by_corner(img: Image.Image, corner: str, needle: Size) -> Image.Image:
    """Cuts the largest needle-shaped area at one of nine anchors (t/m/b x l/c/r) and resizes it to the needle."""
    match = CORNER_RE.match(corner.lower())
    if not match:
        raise InvalidRequestError(f"Corner \"{corner}\" is not in valid format.")
    vertical, horizontal = match.groups()

    original_width, original_height = img.size
    geometry = get_max_size_for_crop((original_width, original_height), needle)
    needle_width = needle[0] if needle[0] is not None else geometry.width
    needle_height = needle[1] if needle[1] is not None else geometry.height

    if needle_width > original_width or needle_height > original_height:
        logger.debug(f"Corner crop skipped: needle ({needle_width},{needle_height}) exceeds ({original_width},{original_height})")
        return img

    top = {
        't': 0,
        'm': round_half_up((original_height - geometry.height) / 2),
        'b': original_height - geometry.height,
    }[vertical]
    left = {
        'l': 0,
        'c': round_half_up((original_width - geometry.width) / 2),
        'r': original_width - geometry.width,
    }[horizontal]

    cropped = img.crop((left, top, left + geometry.width, top + geometry.height))
    return cropped.resize((needle_width, needle_height), RESAMPLE_FILTER)


def percentage_shift(img: Image.Image, px: int, py: int, needle: Tuple[int, int]) -> Image.Image:
    needle_width, needle_height = needle
    original_width, original_height = img.size

    scale = max(needle_width / original_width, needle_height / original_height)
    filled_size = (max(1, round_half_up(original_width * scale)), max(1, round_half_up(original_height * scale)))
    filled = img.resize(filled_size, RESAMPLE_FILTER) if filled_size != img.size else img

    shift_x = min(100, max(0, px)) / 100
    shift_y = min(100, max(0, py)) / 100
    filled_width, filled_height = filled.size
    left, top = 0, 0
    if filled_width > needle_width:
        left = round_half_up((filled_width - needle_width) * shift_x)
    elif filled_height > needle_height:
        top = round_half_up((filled_height - needle_height) * shift_y)

    logger.debug(f"Percentage shift: filled {filled.size}, window ({left},{top}) {needle_width}x{needle_height}")
    return filled.crop((left, top, min(filled_width, left + needle_width), min(filled_height, top + needle_height)))


class TransformEngine:
    """Applies exactly one geometric operation to a workspace file, in place."""

    def __init__(self, config: Config, smart_crop=None):
        self.config = config
        self.smart_crop = smart_crop

    def _mutate(self, path: str, operation: Callable[[Image.Image], Image.Image]) -> bool:
        try:
            with Image.open(path) as img:
                img.load()
                result = operation(img)
                if result is img:
                    return False
                result.load()
        except (UnidentifiedImageError, OSError) as e:
            raise TransformError(f"Image '{path}' can not be transformed: {e}") from e
        save_image(result, path, self.config.jpeg_quality)
        return True

    def crop_breakpoint(self, path: str, width: int) -> bool:
        return self._mutate(path, lambda img: crop_by_breakpoint(img, width, self.config.crop_points))

    def scale(self, path: str, mode: str, size: Tuple[int, int]) -> bool:
        width, height = size
        operations = {
            SCALE_RATIO: lambda img: scale_ratio(img, width, height),
            SCALE_COVER: lambda img: scale_cover(img, width, height),
            SCALE_ABSOLUTE: lambda img: scale_absolute(img, width, height),
        }
        if mode not in operations:
            raise InvalidRequestError(f"Scale \"{mode}\" is not supported.")
        return self._mutate(path, operations[mode])

    def crop_corner(self, path: str, corner: str, size: Size) -> bool:
        return self._mutate(path, lambda img: crop_by_corner(img, corner, size))

    def crop_smart(self, path: str, width: int, height: int) -> bool:
        with Image.open(path) as img:
            original_width, original_height = img.size
        if width > original_width and height > original_height:
            return False
        if self.smart_crop is not None and self.smart_crop.try_smart_crop(path, width, height):
            return True
        return self.crop_corner(path, 'mc', (width, height))

    def shift(self, path: str, px: int, py: int, size: Tuple[int, int]) -> bool:
        return self._mutate(path, lambda img: percentage_shift(img, px, py, size))

    def apply(self, path: str, request: TransformRequest) -> str:
        """Dispatches by priority: breakpoint, scale, crop, shift, then smart crop. Returns the operation name."""
        size = (request.width, request.height)
        if request.break_point:
            operation = 'breakpoint'
            self.crop_breakpoint(path, request.width)
        elif request.scale is not None:
            operation = f"scale-{request.scale}"
            self.scale(path, request.scale, size)
        elif request.crop is not None and request.crop != CROP_SMART:
            operation = f"corner-{request.crop}"
            self.crop_corner(path, request.crop, size)
        elif request.crop is None and request.has_shift:
            operation = 'shift'
            self.shift(path, request.px, request.py, size)
        else:
            operation = 'smart'
            self.crop_smart(path, request.width, request.height)

        logger.debug(f"Applied '{operation}' to '{os.path.basename(path)}'")
        return operation
