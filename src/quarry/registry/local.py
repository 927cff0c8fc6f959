import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Optional

import aiofiles

from ..config import Config
from ..domain.errors import PublishError
from ..domain.models import (
    IndexRecord,
    IndexRecords,
    Package,
    PackageId,
    PackageName,
    SourceId,
)
from ..utils.flock import FileLockGuard, lock_exclusive
from ..utils.hash import checksum_stream
from .callbacks import BeforeNetworkCallback, CreateScratchFileCallback
from .client import RegistryClient
from .http import index_prefix
from .resource import IN_CACHE, NOT_FOUND, Download, RegistryResource

logger = logging.getLogger(__name__)


def fingerprint(path: Path) -> Optional[str]:
    """cache key for a local file: changes whenever the file is rewritten."""
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return f"{stat.st_mtime_ns}-{stat.st_size}"


class LocalRegistryClient(RegistryClient):
    """
    registry living in a directory on the local filesystem.

    layout:
        index/<prefix>/<name>.json   index records
        dl/<name>-<version>.tar.zst  archives

    never touches the network, so `before_network` is never called.
    """

    def __init__(self, root: Path, config: Config):
        self.root = Path(root)
        self.source_id = SourceId.for_local(self.root.resolve())
        self.config = config

    def index_path(self, package: PackageName) -> Path:
        name = str(package)
        return self.root / "index" / index_prefix(name) / f"{name}.json"

    def dl_path(self, package: PackageId) -> Path:
        return self.root / "dl" / package.tarball_name

    async def get_records(
        self,
        package: PackageName,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
    ) -> RegistryResource[IndexRecords]:
        path = self.index_path(package)
        current_key = fingerprint(path)
        if current_key is None:
            return NOT_FOUND
        if cache_key and cache_key == current_key:
            return IN_CACHE

        try:
            async with aiofiles.open(path, "rb") as f:
                content = await f.read()
        except FileNotFoundError:
            return NOT_FOUND
        records = IndexRecords.model_validate_json(content)
        return Download(records, current_key)

    async def download(
        self,
        package: PackageId,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
        create_scratch_file: CreateScratchFileCallback,
    ) -> RegistryResource[FileLockGuard]:
        path = self.dl_path(package)
        current_key = fingerprint(path)
        if current_key is None:
            return NOT_FOUND
        if cache_key and cache_key == current_key:
            return IN_CACHE

        guard = await create_scratch_file(self.config)
        try:
            await asyncio.to_thread(self._copy_into, path, guard)
        except BaseException:
            guard.release()
            raise
        return Download(guard, current_key)

    @staticmethod
    def _copy_into(path: Path, guard: FileLockGuard):
        guard.truncate(0)
        guard.seek(0)
        with open(path, "rb") as f:
            shutil.copyfileobj(f, guard.file)
        guard.flush()
        guard.seek(0)

    async def supports_publish(self) -> bool:
        return True

    async def publish(self, package: Package, tarball: FileLockGuard) -> None:
        index_path = self.index_path(package.name)
        # lock a sibling file so concurrent publishers of one package queue up
        lock_path = index_path.with_suffix(".lock")
        with await lock_exclusive(lock_path, f"index of {package.name}"):
            await asyncio.to_thread(self._publish_locked, package, tarball, index_path)
        logger.debug(f"published {package.id} to {self.root}")

    def _publish_locked(self, package: Package, tarball: FileLockGuard, index_path: Path):
        records = []
        if index_path.exists():
            records = IndexRecords.model_validate_json(index_path.read_bytes()).root
        if any(r.parsed_version == package.id.parsed_version for r in records):
            raise PublishError(f"package {package.name} v{package.version} is already published")

        tarball.seek(0)
        checksum = checksum_stream(tarball.file)

        dl_path = self.dl_path(package.id)
        dl_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dl_path.with_name(f".{dl_path.name}.tmp")
        tarball.seek(0)
        with open(tmp_path, "wb") as f:
            shutil.copyfileobj(tarball.file, f)
        tmp_path.replace(dl_path)

        records.append(IndexRecord(v=package.version, deps=package.dependencies, cksum=checksum))
        index_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_index = index_path.with_name(f".{index_path.name}.tmp")
        with open(tmp_index, "w") as f:
            json.dump(IndexRecords(records).model_dump(mode="json"), f, indent=2)
        tmp_index.replace(index_path)
