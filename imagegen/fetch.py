# -*- coding: utf-8 -*-
import os
import hashlib
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from imagegen.config import Config
from imagegen.errors import RemoteFetchError

logger = logging.getLogger(__name__)


class RemoteFetcher:
    """Downloads image bytes over HTTP for sources that are not on the local disk."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=Retry(total=1, backoff_factor=0))
            session.mount('http://', adapter)
            session.mount('https://', adapter)
            session.max_redirects = 2
        session.headers['User-Agent'] = config.fetch_user_agent
        self.session = session

    def fetch(self, url: str, timeout: Optional[float] = None, min_bytes: Optional[int] = None) -> bytes:
        timeout = self.config.fetch_timeout if timeout is None else timeout
        min_bytes = self.config.fetch_min_bytes if min_bytes is None else min_bytes
        try:
            response = self.session.get(url, timeout=timeout, verify=self.config.fetch_verify_tls)
        except requests.RequestException as e:
            raise RemoteFetchError(f"Image on URL \"{url}\" can not be downloaded: {e}") from e

        content = response.content or b''
        if response.status_code != 200 or len(content) < min_bytes:
            raise RemoteFetchError(
                f"Image on URL does not exist (HTTP code: #{response.status_code}, responseSize: {len(content)})",
                status=response.status_code or 404,
            )
        logger.debug(f"Downloaded {len(content)} bytes from {url}")
        return content


class ProxyStore:
    """Keeps local copies of cross-origin images under ``_cache/_proxy/<md5[:3]>/<md5>.<ext>``."""

    def __init__(self, config: Config, fetcher: Optional[RemoteFetcher] = None):
        self.config = config
        self.fetcher = fetcher or RemoteFetcher(config)

    @property
    def base_path(self) -> str:
        return os.path.join(self.config.cache_dir, '_proxy')

    def storage_path(self, url_hash: Optional[str] = None, extension: Optional[str] = None) -> str:
        path = self.base_path
        if url_hash is not None:
            path = os.path.join(path, url_hash[:3], url_hash)
            if extension is not None:
                path += f".{extension}"
        return path

    @staticmethod
    def url_hash(url: str) -> str:
        return hashlib.md5(url.encode('utf-8')).hexdigest()

    def save(self, url: str, url_hash: Optional[str] = None) -> str:
        url_hash = url_hash or self.url_hash(url)
        extension = os.path.splitext(url.split('?', 1)[0])[1].lstrip('.') or None
        path = self.storage_path(url_hash, extension)
        if os.path.isfile(path):
            return path

        content = self.fetcher.fetch(url, timeout=max(self.config.fetch_timeout, 10.0), min_bytes=1)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'wb') as f:
            f.write(content)
        logger.info(f"Proxied image '{url}' stored as '{path}'")
        return path
