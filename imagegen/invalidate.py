# -*- coding: utf-8 -*-
import os
import re
import glob
import logging
from typing import List

from tqdm import tqdm

from imagegen.errors import InvalidRequestError, FilesystemError
from imagegen.paths import collapse_separators, has_parent_traversal

logger = logging.getLogger(__name__)

CACHED_FILE_RE = re.compile(r'\.(?:jpe?g|png|gif|md5)$', re.IGNORECASE)


def collect_cached_files(path: str, root_dir: str, recursive: bool = False) -> List[str]:
    """
    Lists cache entries derived from ``path`` (relative to ``root_dir``).

    For a file that is every ``<basename>.*`` and ``<basename>__*`` entry in
    its cache directory; for a directory it is every entry inside it.
    """
    if has_parent_traversal(path) or has_parent_traversal(root_dir):
        raise InvalidRequestError(f"Path \"{path}\" could not contain '..'.")

    relative = '/' + path.strip('/')
    original = collapse_separators(f"{root_dir}{relative}")
    if not os.path.lexists(original):
        raise InvalidRequestError(f"File or directory \"{original}\" does not exist.")

    cache_path = collapse_separators(f"{root_dir}/_cache{relative}").rstrip('/')
    if os.path.isfile(original):
        cache_dir = os.path.dirname(cache_path)
        stem = os.path.splitext(os.path.basename(cache_path))[0]
        pattern_base = os.path.join(glob.escape(cache_dir), glob.escape(stem))
        candidates = glob.glob(f"{pattern_base}.*") + glob.glob(f"{pattern_base}__*")
    elif recursive:
        candidates = [
            os.path.join(directory, name)
            for directory, _, names in os.walk(cache_path)
            for name in names
        ]
    else:
        candidates = glob.glob(os.path.join(glob.escape(cache_path), '*'))

    return sorted(
        candidate for candidate in set(candidates)
        if CACHED_FILE_RE.search(candidate) and not os.path.isdir(candidate)
    )


def invalidate_cache(path: str, root_dir: str, recursive: bool = False, progress: bool = False) -> int:
    files = collect_cached_files(path, root_dir, recursive)
    removed = 0
    for file_path in tqdm(files, desc="Invalidating", unit="file", disable=not progress):
        try:
            os.unlink(file_path)
        except FileNotFoundError:
            continue
        except OSError as e:
            raise FilesystemError(f"Cached file \"{file_path}\" can not be removed: {e}") from e
        removed += 1
        logger.debug(f"Removed cached file '{file_path}'")
    logger.info(f"Invalidated {removed} cached file(s) for '{path}'")
    return removed
