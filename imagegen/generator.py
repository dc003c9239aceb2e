# -*- coding: utf-8 -*-
import os
import re
import time
import shutil
import logging
import tempfile
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from imagegen.config import Config
from imagegen.dedup import DedupIndex
from imagegen.errors import HashMismatchError, TransformError, FilesystemError
from imagegen.fetch import RemoteFetcher
from imagegen.optimizer import Optimizer, create_optimizer, quality_for_area
from imagegen.params import TransformRequest, decode, verification_hash
from imagegen.paths import CacheLocation, PathResolver, ResolvedPaths, create_dir
from imagegen.smartcrop import SmartCrop
from imagegen.transform import TransformEngine, format_for_path, is_valid_image, normalize_workspace

logger = logging.getLogger(__name__)

_URL_HASH_RE = re.compile(r'_(.{6})(\..+)$')


class State(Enum):
    VALIDATE_HASH = 'validate_hash'
    RESOLVE_PATHS = 'resolve_paths'
    CHECK_TEMP = 'check_temp'
    WAIT_FOR_PEER = 'wait_for_peer'
    CHECK_CACHE = 'check_cache'
    PREPARE_DIRS = 'prepare_dirs'
    COPY_SOURCE = 'copy_source'
    STRIP_ALPHA = 'strip_alpha'
    TRANSFORM = 'transform'
    OPTIMIZE = 'optimize'
    FINALIZE = 'finalize'
    SERVE_CACHE = 'serve_cache'


@dataclass
class GenerationJob:
    """Mutable per-request state threaded through the coordinator's states."""
    location: CacheLocation
    current_url: Optional[str] = None
    request: Optional[TransformRequest] = None
    paths: Optional[ResolvedPaths] = None
    workspace: Optional[str] = None
    owns_workspace: bool = False
    peer_waited: bool = False
    served_path: Optional[str] = None
    history: List[State] = field(default_factory=list)


class GenerationCoordinator:
    """
    Drives one request from the encoded URL to a file that can be served.

    Processes share nothing but the filesystem. A request that finds a temp
    workspace waits for the peer's cache file; the workspace itself is
    claimed with an exclusive create and published with an atomic rename,
    so readers never see a partially written cache file.
    """

    def __init__(
        self,
        config: Config,
        resolver: PathResolver,
        engine: TransformEngine,
        optimizer: Optimizer,
        dedup: Optional[DedupIndex] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.resolver = resolver
        self.engine = engine
        self.optimizer = optimizer
        self.dedup = dedup or DedupIndex()
        self.sleep = sleep
        self.clock = clock
        self._handlers: Dict[State, Callable[[GenerationJob], Optional[State]]] = {
            State.VALIDATE_HASH: self.validate_hash,
            State.RESOLVE_PATHS: self.resolve_paths,
            State.CHECK_TEMP: self.check_temp,
            State.WAIT_FOR_PEER: self.wait_for_peer,
            State.CHECK_CACHE: self.check_cache,
            State.PREPARE_DIRS: self.prepare_dirs,
            State.COPY_SOURCE: self.copy_source,
            State.STRIP_ALPHA: self.strip_alpha,
            State.TRANSFORM: self.transform,
            State.OPTIMIZE: self.optimize,
            State.FINALIZE: self.finalize,
            State.SERVE_CACHE: self.serve_cache,
        }

    @classmethod
    def from_config(cls, config: Config) -> 'GenerationCoordinator':
        return cls(
            config,
            resolver=PathResolver(config, RemoteFetcher(config)),
            engine=TransformEngine(config, SmartCrop(config.smartcrop_paths)),
            optimizer=create_optimizer(config),
        )

    def run(self, location: CacheLocation, current_url: Optional[str] = None) -> str:
        """Returns the absolute path whose bytes answer the request."""
        job = GenerationJob(location=location, current_url=current_url)
        state: Optional[State] = State.VALIDATE_HASH
        try:
            while state is not None:
                job.history.append(state)
                state = self._handlers[state](job)
        finally:
            self._discard_workspace(job)
        return job.served_path

    def _discard_workspace(self, job: GenerationJob):
        if job.workspace is None or not job.owns_workspace:
            return
        try:
            os.unlink(job.workspace)
            logger.debug(f"Removed unfinished workspace '{job.workspace}'")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove workspace '{job.workspace}': {e}")
        job.workspace = None

    def validate_hash(self, job: GenerationJob) -> State:
        expected = verification_hash(job.location.params)
        if expected != job.location.hash:
            redirect_url = None
            if self.config.debug_mode and job.current_url:
                redirect_url = _URL_HASH_RE.sub(lambda m: f"_{expected}{m.group(2)}", job.current_url)
            logger.info(f"Hash mismatch for params '{job.location.params}': got '{job.location.hash}', expected '{expected}'")
            raise HashMismatchError('Invalid request.', redirect_url=redirect_url)
        job.request = decode(job.location.params)
        return State.RESOLVE_PATHS

    def resolve_paths(self, job: GenerationJob) -> State:
        job.paths = self.resolver.resolve(job.location)
        return State.CHECK_TEMP

    def check_temp(self, job: GenerationJob) -> State:
        if os.path.isfile(job.paths.temp):
            return State.WAIT_FOR_PEER
        return State.CHECK_CACHE

    def wait_for_peer(self, job: GenerationJob) -> State:
        job.peer_waited = True
        for attempt in range(self.config.wait_attempts + 1):
            if attempt > 0:
                self.sleep(self.config.wait_interval)
            if os.path.isfile(job.paths.cache):
                return State.SERVE_CACHE

        try:
            age = abs(self.clock() - os.path.getmtime(job.paths.temp))
        except FileNotFoundError:
            return State.CHECK_CACHE
        if age > self.config.stale_after:
            logger.warning(f"Temp file '{job.paths.temp}' abandoned for {age:.0f}s. Removing it.")
            try:
                os.unlink(job.paths.temp)
            except FileNotFoundError:
                pass
        return State.CHECK_CACHE

    def check_cache(self, job: GenerationJob) -> State:
        if os.path.isfile(job.paths.cache):
            return State.SERVE_CACHE
        return State.PREPARE_DIRS

    def prepare_dirs(self, job: GenerationJob) -> State:
        create_dir(os.path.dirname(job.paths.temp))
        create_dir(os.path.dirname(job.paths.cache))
        return State.COPY_SOURCE

    def _claim_workspace(self, job: GenerationJob) -> Optional[int]:
        try:
            fd = os.open(job.paths.temp, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o664)
            job.workspace = job.paths.temp
        except FileExistsError:
            if not job.peer_waited:
                return None
            # The peer is still busy after the wait; work beside it instead of on top of it.
            directory, file_name = os.path.split(job.paths.temp)
            stem, extension = os.path.splitext(file_name)
            fd, job.workspace = tempfile.mkstemp(prefix=f"{stem}.", suffix=extension, dir=directory)
            logger.info(f"Temp file '{file_name}' is busy. Generating in private workspace '{os.path.basename(job.workspace)}'.")
        except OSError as e:
            raise FilesystemError(f"File can not be created in temp \"{job.paths.temp}\": {e}") from e
        job.owns_workspace = True
        return fd

    def copy_source(self, job: GenerationJob) -> State:
        if not is_valid_image(job.paths.source):
            raise TransformError(f"Source image \"{job.paths.source}\" is not a valid image.")

        fd = self._claim_workspace(job)
        if fd is None:
            logger.debug(f"Temp file '{job.paths.temp}' was claimed by another worker. Waiting for it.")
            return State.WAIT_FOR_PEER

        try:
            with os.fdopen(fd, 'wb') as target, open(job.paths.source, 'rb') as source:
                shutil.copyfileobj(source, target)
        except OSError as e:
            raise FilesystemError(f"File can not be copied to temp. \"{job.paths.source}\" => \"{job.workspace}\": {e}") from e
        return State.STRIP_ALPHA

    def strip_alpha(self, job: GenerationJob) -> State:
        normalize_workspace(job.workspace, self.config.default_background_color, self.config.jpeg_quality)
        return State.TRANSFORM

    def transform(self, job: GenerationJob) -> State:
        self.engine.apply(job.workspace, job.request)
        return State.OPTIMIZE

    def optimize(self, job: GenerationJob) -> State:
        self.optimizer.optimize(job.workspace, quality_for_area(job.request.area))
        return State.FINALIZE

    def finalize(self, job: GenerationJob) -> State:
        if not is_valid_image(job.workspace, format_for_path(job.paths.cache)):
            self._discard_workspace(job)
            raise TransformError(f"Generated image for \"{job.location.file_name}\" is not a valid image.")

        try:
            os.replace(job.workspace, job.paths.cache)
        except OSError as e:
            raise FilesystemError(f"Generated image can not be moved to cache \"{job.paths.cache}\": {e}") from e
        job.workspace = None
        job.owns_workspace = False
        logger.info(f"Generated '{job.location.file_name}'")

        job.served_path = job.paths.cache
        if self.config.deduplicate:
            job.served_path = self.dedup.finalize(job.paths.cache)
        return State.SERVE_CACHE

    def serve_cache(self, job: GenerationJob) -> None:
        if job.served_path is None:
            job.served_path = job.paths.cache
        if not os.path.isfile(job.served_path):
            raise FilesystemError(f"File \"{job.served_path}\" is not in cache path.")
        return None
