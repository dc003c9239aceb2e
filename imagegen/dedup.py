# -*- coding: utf-8 -*-
import os
import re
import uuid
import hashlib
import logging

logger = logging.getLogger(__name__)

SIDECAR_RE = re.compile(r'^(?P<filename>.+)_(?P<md5>[0-9a-f]{32})\.md5$')


def file_md5(path: str, chunk_size: int = 65536) -> str:
    digest = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


def sidecar_path(cache_path: str, content_hash: str) -> str:
    return f"{cache_path}_{content_hash}.md5"


class DedupIndex:
    """
    Different params can produce byte-identical images. The first file with a
    given content gets a zero-byte ``<file>_<md5>.md5`` sidecar; later
    duplicates are replaced by a relative symlink to that first file.
    """

    def finalize(self, cache_path: str) -> str:
        content_hash = file_md5(cache_path)
        directory, own_name = os.path.split(cache_path)

        for item in sorted(os.listdir(directory), reverse=True):
            match = SIDECAR_RE.match(item)
            if not match or match.group('md5') != content_hash:
                continue
            canonical_name = match.group('filename')
            if canonical_name == own_name:
                return cache_path
            canonical_path = os.path.join(directory, canonical_name)
            if not os.path.isfile(canonical_path):
                continue
            if self._link(cache_path, canonical_name):
                logger.info(f"Deduplicated '{own_name}' -> '{canonical_name}' (md5 {content_hash})")
                return canonical_path
            break

        self._record(cache_path, content_hash)
        return cache_path

    def _link(self, cache_path: str, canonical_name: str) -> bool:
        """Swaps ``cache_path`` for a symlink in one rename; the real file stays on any failure."""
        link_path = os.path.join(os.path.dirname(cache_path), f".{uuid.uuid4().hex}.link")
        try:
            os.symlink(canonical_name, link_path)
            os.replace(link_path, cache_path)
        except OSError as e:
            logger.warning(f"Could not link '{os.path.basename(cache_path)}' to '{canonical_name}', keeping the file: {e}")
            try:
                os.unlink(link_path)
            except FileNotFoundError:
                pass
            return False
        return True

    def _record(self, cache_path: str, content_hash: str):
        with open(sidecar_path(cache_path, content_hash), 'wb'):
            pass
        logger.debug(f"Recorded content hash {content_hash} for '{os.path.basename(cache_path)}'")
