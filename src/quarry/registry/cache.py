import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Hashable, Optional, Type, TypeVar

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ValidationError

from ..config import Config
from ..domain.errors import ChecksumMismatchError, ContractViolation, OfflineError
from ..domain.models import IndexRecords, Package, PackageId, PackageName, SourceId
from ..ui.progress import ProgressManager
from ..utils.flock import FileLockGuard, lock_exclusive, lock_shared
from ..utils.hash import checksum_file, checksum_stream, short_hash
from .callbacks import BeforeNetworkCallback, CreateScratchFileCallback, single_use
from .client import RegistryClient
from .resource import IN_CACHE, Download, InCache, NotFound, RegistryResource

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class CachedRecords(BaseModel):
    cache_key: Optional[str] = None
    records: IndexRecords


class CachedArchive(BaseModel):
    cache_key: Optional[str] = None
    checksum: str


def cache_dir_for(config: Config, source_id: SourceId) -> Path:
    """directory holding everything cached for one registry source."""
    return config.cache_dir / "registry" / short_hash(str(source_id))


def clear_cache(config: Config, source_id: SourceId) -> Path:
    """remove everything cached for one registry source. returns the removed directory."""
    cache_dir = cache_dir_for(config, source_id)
    if cache_dir.exists():
        shutil.rmtree(cache_dir)
    return cache_dir


async def _read_entry(path: Path, model: Type[M], what: str) -> Optional[M]:
    if not await aiofiles.os.path.exists(path):
        return None
    try:
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return model.model_validate_json(content)
    except (OSError, ValidationError) as e:
        logger.warning(f"ignoring unreadable cached {what}: {e}")
        return None


async def _write_atomic(path: Path, content: str):
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(tmp_path, "w") as f:
        await f.write(content)
    await aiofiles.os.replace(tmp_path, path)


async def _remove(*paths: Path):
    for path in paths:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass


class RegistryClientCache(RegistryClient):
    """
    caching layer on top of another registry client.

    index records and verified archives are kept under
    `<cache_dir>/registry/<source hash>/`, together with the opaque cache keys
    the inner client issued for them. every request replays the stored key to
    the inner client, so the inner client alone decides whether the cached
    copy is still valid.

    requests for the same package (records) or package id (archives) are
    serialized, so there is at most one inner fetch per identity in flight.
    archives are handed out under shared locks, so callers may keep reading
    them while other requests for the same id are answered.
    """

    def __init__(
        self,
        client: RegistryClient,
        config: Config,
        progress_manager: Optional[ProgressManager] = None,
    ):
        if client.source_id is None:
            raise ValueError(f"{type(client).__name__} has no source_id to key the cache on")
        self.client = client
        self.source_id = client.source_id
        self.config = config
        self.progress_manager = progress_manager or ProgressManager(quiet=True)
        self.cache_dir = cache_dir_for(config, self.source_id)
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._lock_users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def _serialized(self, identity: Hashable):
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        self._lock_users[identity] = self._lock_users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # forget the lock once nobody holds or waits for it
            self._lock_users[identity] -= 1
            if not self._lock_users[identity]:
                del self._lock_users[identity]
                del self._locks[identity]

    # paths

    def records_path(self, package: PackageName) -> Path:
        return self.cache_dir / "index" / f"{package}.json"

    def archive_path(self, package: PackageId) -> Path:
        return self.cache_dir / "dl" / str(package.name) / package.tarball_name

    def archive_meta_path(self, package: PackageId) -> Path:
        return self.cache_dir / "dl" / str(package.name) / f"{package.name}-{package.version}.json"

    def scratch_path(self, package: PackageId) -> Path:
        return self.cache_dir / "dl" / str(package.name) / f".{package.tarball_name}.part"

    # callbacks handed to the inner client

    def _before_network(self, verb: str, subject: str, before_network: BeforeNetworkCallback):
        def callback():
            if self.config.offline:
                raise OfflineError(f"cannot fetch {subject} in offline mode")
            logger.debug(f"{verb.lower()} {subject} from {self.source_id}")
            self.progress_manager.status(verb, subject)
            before_network()

        return single_use(callback, "before_network")

    def _scratch_file_creator(self, package: PackageId) -> CreateScratchFileCallback:
        async def create_scratch_file(config: Config) -> FileLockGuard:
            return await lock_exclusive(
                self.scratch_path(package), f"download of {package}", truncate=True
            )

        return single_use(create_scratch_file, "create_scratch_file")

    # index records

    async def _load_records(self, package: PackageName) -> Optional[CachedRecords]:
        return await _read_entry(self.records_path(package), CachedRecords, f"index for {package}")

    async def get_records(
        self,
        package: PackageName,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
    ) -> RegistryResource[IndexRecords]:
        async with self._serialized(("records", str(package))):
            entry = await self._load_records(package)

            if entry is not None and self.config.offline:
                logger.debug(f"offline: using cached index for {package}")
                return self._answer(entry.records, entry.cache_key, cache_key)

            stored_key = entry.cache_key if entry else None
            result = await self.client.get_records(
                package,
                stored_key,
                self._before_network("Updating", f"index {package}", before_network),
            )

            if isinstance(result, NotFound):
                await _remove(self.records_path(package))
                return result

            if isinstance(result, InCache):
                if not stored_key:
                    raise ContractViolation(
                        f"{type(self.client).__name__} answered InCache without a cache key"
                    )
                logger.debug(f"cached index for {package} is up to date")
                return self._answer(entry.records, stored_key, cache_key)

            await _write_atomic(
                self.records_path(package),
                CachedRecords(cache_key=result.cache_key, records=result.resource).model_dump_json(),
            )
            return result

    @staticmethod
    def _answer(payload, stored_key: Optional[str], caller_key: Optional[str]):
        # the caller already holds what we hold
        if caller_key and caller_key == stored_key:
            return IN_CACHE
        return Download(payload, stored_key)

    # archives

    async def _load_archive(self, package: PackageId) -> Optional[CachedArchive]:
        archive_path = self.archive_path(package)
        if not await aiofiles.os.path.exists(archive_path):
            return None
        entry = await _read_entry(
            self.archive_meta_path(package), CachedArchive, f"archive of {package}"
        )
        if entry is None:
            return None
        try:
            actual = await asyncio.to_thread(checksum_file, archive_path)
        except OSError as e:
            logger.warning(f"ignoring unreadable cached archive of {package}: {e}")
            return None
        if actual != entry.checksum:
            logger.warning(f"ignoring corrupted cached archive of {package}")
            return None
        return entry

    async def _expected_checksum(self, package: PackageId) -> Optional[str]:
        entry = await self._load_records(package.name)
        if entry is None:
            return None
        record = entry.records.find(package.version)
        return record.cksum if record else None

    async def _commit(self, package: PackageId, scratch: FileLockGuard) -> str:
        """verify a finished download and move it into place. returns its checksum."""
        scratch.seek(0)
        actual = await asyncio.to_thread(checksum_stream, scratch.file)
        expected = await self._expected_checksum(package)
        if expected is not None and expected != actual:
            raise ChecksumMismatchError(str(package), expected, actual)

        # still holding the scratch lock, so nobody else is writing this file;
        # readers of the previous archive keep their open file
        await aiofiles.os.replace(scratch.path, self.archive_path(package))
        scratch.release()
        return actual

    async def download(
        self,
        package: PackageId,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
        create_scratch_file: CreateScratchFileCallback,
    ) -> RegistryResource[FileLockGuard]:
        """
        download through the cache.

        archives are staged in this cache's own scratch files, so
        `create_scratch_file` is never invoked. the returned guard holds a
        shared lock on the cached archive.
        """
        async with self._serialized(("dl", package)):
            result = await self._refresh_archive(package, cache_key, before_network)

        if isinstance(result, Download):
            guard = await lock_shared(self.archive_path(package), str(package))
            return Download(guard, result.cache_key)
        return result

    async def _refresh_archive(
        self,
        package: PackageId,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
    ) -> RegistryResource[Path]:
        """bring the cached archive up to date; a Download names the archive path."""
        entry = await self._load_archive(package)

        if entry is not None and self.config.offline:
            logger.debug(f"offline: using cached archive of {package}")
            return self._answer(self.archive_path(package), entry.cache_key, cache_key)

        stored_key = entry.cache_key if entry else None
        result = await self.client.download(
            package,
            stored_key,
            self._before_network("Downloading", str(package), before_network),
            self._scratch_file_creator(package),
        )

        if isinstance(result, NotFound):
            await _remove(self.archive_path(package), self.archive_meta_path(package))
            return result

        if isinstance(result, InCache):
            if not stored_key:
                raise ContractViolation(
                    f"{type(self.client).__name__} answered InCache without a cache key"
                )
            logger.debug(f"cached archive of {package} is up to date")
            return self._answer(self.archive_path(package), stored_key, cache_key)

        scratch = result.resource
        try:
            checksum = await self._commit(package, scratch)
        except BaseException:
            if scratch.is_locked:
                # leave an empty scratch file for the next attempt to overwrite
                scratch.truncate(0)
                scratch.release()
            raise

        await _write_atomic(
            self.archive_meta_path(package),
            CachedArchive(cache_key=result.cache_key, checksum=checksum).model_dump_json(),
        )
        return Download(self.archive_path(package), result.cache_key)

    # publishing and maintenance

    async def supports_publish(self) -> bool:
        return await self.client.supports_publish()

    async def publish(self, package: Package, tarball: FileLockGuard) -> None:
        await self.client.publish(package, tarball)

    def clear(self):
        """remove everything cached for this registry."""
        clear_cache(self.config, self.source_id)
