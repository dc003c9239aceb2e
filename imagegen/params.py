# -*- coding: utf-8 -*-
import re
import math
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional, Mapping

from imagegen.errors import InvalidRequestError

logger = logging.getLogger(__name__)

MIN_SIZE: int = 16
MAX_SIZE: int = 3000
DEFAULT_SIZE: int = 64
HASH_LENGTH: int = 6

CROP_SMART: str = 'sm'

SCALE_RATIO: str = 'r'
SCALE_COVER: str = 'c'
SCALE_ABSOLUTE: str = 'a'
SCALE_MODES = (SCALE_RATIO, SCALE_COVER, SCALE_ABSOLUTE)

_WIDTH_RE = re.compile(r'^w(\d+)', re.IGNORECASE)
_HEIGHT_RE = re.compile(r'^(w\d+)?h(\d+)', re.IGNORECASE)
_SCALE_RE = re.compile(r'-sc([rca])', re.IGNORECASE)
_CROP_RE = re.compile(r'-c([a-z]{2,5})')
_PX_RE = re.compile(r'-px(\d+)', re.IGNORECASE)
_PY_RE = re.compile(r'-py(\d+)', re.IGNORECASE)

CORNER_RE = re.compile(r'^([tmb])([lcr])$')


def round_half_up(value: float) -> int:
    """Rounds halves away from zero (Python's round() rounds them to even)."""
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


def _clamp_dimension(name: str, value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_SIZE
    if value == 0:
        raise InvalidRequestError(f"{name.capitalize()} can not be zero.")
    if value < MIN_SIZE:
        logger.warning(f"Minimal mandatory {name} is {MIN_SIZE}px, but \"{value}\" given.")
        return MIN_SIZE
    if value > MAX_SIZE:
        logger.warning(f"Image is so large. Maximal {name} is {MAX_SIZE}px, but \"{value}\" given.")
        return MAX_SIZE
    return value


@dataclass(frozen=True)
class TransformRequest:
    width: int
    height: int
    break_point: bool = False
    scale: Optional[str] = None
    crop: Optional[str] = None
    px: Optional[int] = None
    py: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'width', _clamp_dimension('width', self.width))
        object.__setattr__(self, 'height', _clamp_dimension('height', self.height))
        if self.scale is not None:
            scale = str(self.scale).lower()
            if scale not in SCALE_MODES:
                choices = '", "'.join(SCALE_MODES)
                raise InvalidRequestError(f"Scale \"{self.scale}\" is not supported. Did you mean \"{choices}\"?")
            object.__setattr__(self, 'scale', scale)
        if self.crop is not None and self.crop != CROP_SMART and not CORNER_RE.match(str(self.crop).lower()):
            raise InvalidRequestError(f"Corner \"{self.crop}\" is not in valid format.")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'TransformRequest':
        if 'width' not in params or 'height' not in params:
            raise InvalidRequestError('Width or height params are required.')
        return cls(
            width=params['width'],
            height=params['height'],
            break_point=bool(params.get('break_point', False)),
            scale=params.get('scale'),
            crop=params.get('crop'),
            px=params.get('px'),
            py=params.get('py'),
        )

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def has_shift(self) -> bool:
        return self.px is not None and self.py is not None


def _optional_int(pattern: re.Pattern, params: str) -> Optional[int]:
    match = pattern.search(params)
    return int(match.group(1)) if match else None


def decode(params: str) -> TransformRequest:
    """Parses an encoded string such as ``w800h600-scr`` into a TransformRequest."""
    width_match = _WIDTH_RE.match(params)
    height_match = _HEIGHT_RE.match(params)
    scale_match = _SCALE_RE.search(params)
    crop_match = _CROP_RE.search(params)

    return TransformRequest(
        width=int(width_match.group(1)) if width_match else None,
        height=int(height_match.group(2)) if height_match else None,
        break_point='-br' in params,
        scale=scale_match.group(1).lower() if scale_match else None,
        crop=crop_match.group(1) if crop_match else None,
        px=_optional_int(_PX_RE, params),
        py=_optional_int(_PY_RE, params),
    )


def encode(request: TransformRequest) -> str:
    encoded = f"w{request.width}h{request.height}"
    if request.break_point:
        encoded += '-br'
    if request.scale is not None:
        encoded += f"-sc{request.scale}"
    if request.crop is not None:
        encoded += f"-c{request.crop}"
    if request.px is not None:
        encoded += f"-px{request.px}"
    if request.py is not None:
        encoded += f"-py{request.py}"
    return encoded


def _smooth_hash(params: str, iterator: int = 0) -> str:
    digest = hashlib.sha1(params.encode('utf-8')).hexdigest()
    if iterator > 3 or len(params) < HASH_LENGTH:
        return digest

    smoothed = ''.join(
        chr(round_half_up((ord(digest[i]) + ord(digest[i - 1])) / 2))
        for i in range(2, len(digest))
    )
    while len(smoothed) < 12:
        smoothed += smoothed.lower()

    return _smooth_hash(smoothed.lower(), iterator + 1)[:HASH_LENGTH].lower()


def verification_hash(params: str) -> str:
    """
    Deterministic 6-character fingerprint of an encoded params string.

    The value is embedded in every published URL, so the smoothing rounds
    must stay exactly as they are.
    """
    return _smooth_hash(params)[:HASH_LENGTH]


def params_to_string(params: Mapping[str, Any]) -> str:
    """Builds the encoded string from template-style keys (w/width, h/height, sc, cr/c)."""
    width = params.get('w', params.get('width'))
    height = params.get('h', params.get('height'))
    if width is None or height is None or int(width) <= 0 or int(height) <= 0:
        raise InvalidRequestError('Image width and height is always mandatory.')

    encoded = f"w{int(width)}h{int(height)}"
    if params.get('sc') is not None:
        encoded += f"-sc{params['sc']}"
    crop = params.get('cr', params.get('c'))
    if crop is not None:
        encoded += f"-c{crop}"
    return encoded
