# -*- coding: utf-8 -*-
import os
import re
import stat
import logging
from dataclasses import dataclass
from typing import Optional, List

from imagegen.config import Config
from imagegen.errors import InvalidRequestError, SourceNotFoundError, RemoteFetchError, FilesystemError
from imagegen.fetch import RemoteFetcher

logger = logging.getLogger(__name__)

REMOTE_EXTENSIONS = ('jpg', 'png', 'gif')
PROXY_DIRNAME = 'image-generator-proxy'

_REPEATED_SEPARATORS = re.compile(r'/+')
_TRAILING_EXTENSION = re.compile(r'\.[a-zA-Z]+$')


def collapse_separators(path: str) -> str:
    return _REPEATED_SEPARATORS.sub('/', path)


def has_parent_traversal(segment: str) -> bool:
    return '..' in segment


@dataclass(frozen=True)
class CacheLocation:
    dirname: str
    basename: str
    params: str
    hash: str
    extension: str

    def __post_init__(self):
        if has_parent_traversal(self.dirname) or has_parent_traversal(self.basename):
            raise InvalidRequestError(f"Path \"{self.dirname}/{self.basename}\" could not contain '..'.")
        if '/' in self.basename:
            raise InvalidRequestError(f"Basename \"{self.basename}\" could not contain a path separator.")
        object.__setattr__(self, 'dirname', self.dirname.strip('/'))

    @property
    def file_name(self) -> str:
        return f"{self.basename}__{self.params}_{self.hash}.{self.extension}"

    @property
    def file_path(self) -> str:
        return collapse_separators(f"{self.dirname}/{self.basename}.{self.extension}").lstrip('/')


@dataclass(frozen=True)
class ResolvedPaths:
    source: str
    temp: str
    cache: str


def fix_dir_perms(path: str):
    """The group needs at least r-x (5) or rwx (7) so sibling workers can write image data."""
    group = (stat.S_IMODE(os.stat(path).st_mode) >> 3) & 0o7
    if group in (5, 7):
        return
    try:
        os.chmod(path, 0o775)
    except OSError as e:
        raise FilesystemError(f"Can not set directory permission. Directory \"{path}\" given: {e}") from e


def create_dir(path: str):
    """Creates every missing part of ``path`` and repairs permissions of each created level."""
    if os.path.isdir(path):
        fix_dir_perms(path)
        return

    missing: List[str] = []
    part = path
    while part and not os.path.isdir(part):
        missing.append(part)
        parent = os.path.dirname(part)
        if parent == part:
            break
        part = parent

    for part in reversed(missing):
        try:
            os.makedirs(part, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Can not create directory \"{part}\": {e}") from e
        fix_dir_perms(part)


class PathResolver:

    def __init__(self, config: Config, fetcher: Optional[RemoteFetcher] = None):
        self.config = config
        self.fetcher = fetcher

    def _abs(self, *parts: str) -> str:
        return collapse_separators('/'.join((self.config.root_dir,) + parts))

    def source_dir(self, location: CacheLocation) -> str:
        return self._abs(location.dirname)

    def cache_dir(self, location: CacheLocation) -> str:
        return self._abs('_cache', location.dirname)

    def temp_dir(self, location: CacheLocation) -> str:
        return self._abs('_cache', '_temp', location.dirname)

    def download_dir(self, location: CacheLocation) -> str:
        return self._abs('_cache', '_downloaded', location.dirname)

    def cache_path(self, location: CacheLocation) -> str:
        return collapse_separators(f"{self.cache_dir(location)}/{location.file_name}")

    def temp_path(self, location: CacheLocation) -> str:
        return collapse_separators(f"{self.temp_dir(location)}/{location.file_name}")

    def proxy_dir(self, location: CacheLocation) -> str:
        return self._abs('_cache', '_proxy', location.basename[:3])

    @staticmethod
    def _find_source(directory: str, basename: str, extension: str) -> Optional[str]:
        if not os.path.isdir(directory):
            return None

        found = None
        for item in sorted(os.listdir(directory), reverse=True):
            if _TRAILING_EXTENSION.sub('', item) != basename:
                continue
            if not os.path.isfile(os.path.join(directory, item)):
                continue
            if found is None or item.endswith(extension):
                found = collapse_separators(f"{directory}/{item}")
        return found

    def resolve_local_source(self, location: CacheLocation) -> Optional[str]:
        if location.dirname == PROXY_DIRNAME:
            return self._find_source(self.proxy_dir(location), location.basename, location.extension)
        return self._find_source(self.source_dir(location), location.basename, location.extension)

    def resolve_remote_source(self, location: CacheLocation) -> Optional[str]:
        if self.fetcher is None or not self.config.base_url:
            return None
        if not location.params or has_parent_traversal(location.dirname):
            return None

        download_dir = self.download_dir(location)
        create_dir(download_dir)
        for extension in REMOTE_EXTENSIONS:
            file_name = f"{location.basename}.{extension}"
            url = collapse_separators(f"{location.dirname}/{file_name}").lstrip('/')
            url = f"{self.config.base_url}/{url}"
            download_path = collapse_separators(f"{download_dir}/{file_name}")

            if os.path.isfile(download_path):
                if os.path.getsize(download_path) > 1:
                    return download_path
                continue

            try:
                content = self.fetcher.fetch(url)
            except RemoteFetchError as e:
                logger.debug(f"Remote source {url} is not available ({e}). Recording empty marker.")
                with open(download_path, 'wb'):
                    pass
                continue

            with open(download_path, 'wb') as f:
                f.write(content)
            logger.info(f"Remote source {url} downloaded to {download_path}")
            return download_path
        return None

    def resolve_source(self, location: CacheLocation) -> Optional[str]:
        return self.resolve_local_source(location) or self.resolve_remote_source(location)

    def resolve(self, location: CacheLocation) -> ResolvedPaths:
        source = self.resolve_source(location)
        if source is None:
            raise SourceNotFoundError(f"Source file \"{location.file_path}\" does not exist.")
        return ResolvedPaths(source=source, temp=self.temp_path(location), cache=self.cache_path(location))
