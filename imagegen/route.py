# -*- coding: utf-8 -*-
import os
import re
import time
import logging
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Dict, Optional

from imagegen.config import Config
from imagegen.errors import (
    HashMismatchError,
    InvalidRequestError,
    SourceNotFoundError,
    TransformError,
    RemoteFetchError,
    FilesystemError,
)
from imagegen.generator import GenerationCoordinator
from imagegen.paths import CacheLocation
from imagegen.placeholder import render_placeholder

logger = logging.getLogger(__name__)

PATTERN = re.compile(
    r'(?:(?P<dirname>.+)/)?'
    r'(?P<basename>[^/]+)'
    r'__(?P<params>(?:w\d+|h\d+)[^/]+)'
    r'_(?P<hash>[a-z0-9]{6})'
    r'\.(?P<extension>[jJ][pP][eE]?[gG]|[pP][nN][gG]|[gG][iI][fF])'
)

CONTENT_TYPES: Dict[str, str] = {
    'png': 'image/png',
    'gif': 'image/gif',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
}

CACHE_MAX_AGE: int = 86400
EXPIRES_AFTER: int = 12 * 3600


@dataclass
class ImageResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b''


def content_type_for(path: str) -> str:
    extension = os.path.splitext(path)[1].lstrip('.').lower()
    return CONTENT_TYPES.get(extension, 'image/jpeg')


def cache_headers(path: str, config: Config, now: Optional[float] = None) -> Dict[str, str]:
    cache_control = f"max-age={CACHE_MAX_AGE}"
    if not config.is_localhost:
        cache_control += ', immutable, public'
    now = time.time() if now is None else now
    return {
        'Pragma': 'public',
        'Cache-Control': cache_control,
        'Expires': formatdate(now + EXPIRES_AFTER, usegmt=True),
        'Content-Type': content_type_for(path),
    }


class ImageRoute:
    """
    Maps a relative URL such as ``images/forest__w200h100-scc_7a3b9c.jpg`` to
    response bytes. Every expected failure becomes a response; only
    unexpected errors propagate.
    """

    def __init__(self, config: Config, coordinator: Optional[GenerationCoordinator] = None):
        self.config = config
        self.coordinator = coordinator or GenerationCoordinator.from_config(config)

    @staticmethod
    def match(relative_url: str) -> Optional[CacheLocation]:
        path = relative_url.split('?', 1)[0].lstrip('/')
        match = PATTERN.fullmatch(path)
        if match is None:
            return None
        return CacheLocation(
            dirname=match.group('dirname') or '',
            basename=match.group('basename'),
            params=match.group('params'),
            hash=match.group('hash'),
            extension=match.group('extension'),
        )

    def _placeholder(self, status: int, params: str, message: str) -> ImageResponse:
        body = render_placeholder(params, message, debug=self.config.debug_mode)
        return ImageResponse(status, {'Content-Type': 'image/png', 'Cache-Control': 'no-store'}, body)

    def handle(self, relative_url: str, current_url: Optional[str] = None) -> ImageResponse:
        try:
            location = self.match(relative_url)
        except InvalidRequestError as e:
            logger.info(f"Rejected '{relative_url}': {e}")
            return self._placeholder(400, '', str(e))
        if location is None:
            return ImageResponse(404, {'Content-Type': 'text/plain; charset=utf-8'}, b'Not Found')

        try:
            served_path = self.coordinator.run(location, current_url=current_url)
            with open(served_path, 'rb') as f:
                body = f.read()
            return ImageResponse(200, cache_headers(location.file_name, self.config), body)
        except HashMismatchError as e:
            if e.redirect_url:
                return ImageResponse(301, {'Location': e.redirect_url}, b'')
            return self._placeholder(403, location.params, str(e))
        except InvalidRequestError as e:
            logger.info(f"Invalid request '{relative_url}': {e}")
            return self._placeholder(400, location.params, str(e))
        except SourceNotFoundError as e:
            logger.info(str(e))
            return self._placeholder(404, location.params, str(e))
        except (TransformError, RemoteFetchError) as e:
            logger.error(f"Image '{location.file_name}' could not be generated: {e}")
            return self._placeholder(200, location.params, str(e))
        except (FilesystemError, OSError) as e:
            logger.error(f"Filesystem error while serving '{relative_url}': {e}")
            body = f"Internal Server Error: {e}" if self.config.debug_mode else 'Internal Server Error'
            return ImageResponse(500, {'Content-Type': 'text/plain; charset=utf-8'}, body.encode('utf-8'))
        except Exception:
            logger.critical(f"Unexpected error while serving '{relative_url}'", exc_info=True)
            raise
