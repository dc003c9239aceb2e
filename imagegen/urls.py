# -*- coding: utf-8 -*-
import re
import logging
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit, unquote

from imagegen.config import Config
from imagegen.errors import InvalidRequestError
from imagegen.fetch import ProxyStore
from imagegen.params import params_to_string, verification_hash
from imagegen.paths import PROXY_DIRNAME

logger = logging.getLogger(__name__)

INVALID_IMAGE: str = '#INVALID_IMAGE#'

_ABSOLUTE_URL_RE = re.compile(r'^https?://.+\.([a-zA-Z]+)$')
_ENCODED_URL_RE = re.compile(r'^(?P<prefix>.*[/\\])(?P<filename>.+?)(?:__[^_]*?_[a-z0-9]{6})(?P<suffix>\.[^.]+)$')
_FILE_URL_RE = re.compile(r'(?P<prefix>.*/)?(?P<filename>[\w.-]+)\.(?P<suffix>.+)$')


def _is_own_host(url_host: Optional[str], config: Config) -> bool:
    if not config.base_url or not url_host:
        return False
    return urlsplit(config.base_url).hostname == unquote(url_host).lower()


def build_url(url: Optional[str], params: Mapping[str, Any], config: Config, proxy: Optional[ProxyStore] = None) -> str:
    """
    Turns an image URL plus template params (``w``, ``h``, ``sc``, ``cr``)
    into the encoded URL the route understands.

    Images hosted elsewhere are downloaded once into the proxy store and
    served from this host.
    """
    base_url = config.base_url or ''
    if url is None or url == INVALID_IMAGE:
        url = f"{base_url}/placeholder.png"
    else:
        absolute = _ABSOLUTE_URL_RE.match(url)
        if absolute is not None:
            parts = urlsplit(url)
            if _is_own_host(parts.hostname, config):
                port = f":{parts.port}" if parts.port and parts.port not in (80, 443) else ''
                return f"{parts.scheme}://{parts.hostname}{port}" + build_url(parts.path, params, config, proxy)

            proxy = proxy or ProxyStore(config)
            url_hash = proxy.url_hash(url)
            proxy.save(url, url_hash)
            url = f"{base_url}/{PROXY_DIRNAME}/{url_hash}.{absolute.group(1)}"
        else:
            encoded = _ENCODED_URL_RE.match(url)
            if encoded is not None:
                url = encoded.group('prefix') + encoded.group('filename') + encoded.group('suffix')

    match = _FILE_URL_RE.search(url)
    if match is None:
        raise InvalidRequestError(f"Invalid URL \"{url}\" given.")

    encoded_params = params_to_string(params)
    return (
        f"{match.group('prefix') or ''}{match.group('filename')}"
        f"__{encoded_params}_{verification_hash(encoded_params)}.{match.group('suffix')}"
    )
