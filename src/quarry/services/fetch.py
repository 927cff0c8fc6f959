import asyncio
from pathlib import Path
from typing import NamedTuple

from ..config import Config
from ..domain.errors import PackageNotFoundError
from ..domain.models import PackageId, PackageName
from ..registry.callbacks import noop_before_network
from ..registry.client import RegistryClient
from ..registry.resource import Download, NotFound
from ..utils.flock import FileLockGuard, lock_exclusive
from ..utils.hash import checksum_stream


class FetchedArchive(NamedTuple):
    package: PackageId
    path: Path
    checksum: str


class FetchService:
    """downloads package archives through a registry client."""

    def __init__(self, registry_client: RegistryClient, config: Config):
        self.registry_client = registry_client
        self.config = config

    def package_id(self, name: str, version: str) -> PackageId:
        return PackageId(name=PackageName(name), version=version, source=self.registry_client.source_id)

    async def _create_scratch_file(self, config: Config) -> FileLockGuard:
        # only used when the client is not a caching layer with its own storage
        return await lock_exclusive(config.cache_dir / "tmp" / ".download.part", "download", truncate=True)

    async def fetch(self, name: str, version: str) -> FetchedArchive:
        """
        download one archive and return where it lives.

        raises:
            PackageNotFoundError: if the registry does not have this version
        """
        package = self.package_id(name, version)
        result = await self.registry_client.download(
            package, None, noop_before_network, self._create_scratch_file
        )
        if isinstance(result, NotFound):
            raise PackageNotFoundError(str(package))
        if not isinstance(result, Download):
            raise RuntimeError(f"unexpected registry answer for {package}: {result!r}")

        with result.resource as guard:
            checksum = await asyncio.to_thread(checksum_stream, guard.file)
            return FetchedArchive(package, guard.path, checksum)
