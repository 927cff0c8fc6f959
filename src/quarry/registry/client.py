from abc import ABC, abstractmethod
from typing import Optional

from ..domain.errors import ContractViolation
from ..domain.models import IndexRecords, Package, PackageId, PackageName, SourceId
from ..utils.flock import FileLockGuard
from .callbacks import BeforeNetworkCallback, CreateScratchFileCallback
from .resource import RegistryResource


class RegistryClient(ABC):
    """
    a source of index records and package archives.

    implementations must be safe to share between concurrently running tasks.
    """

    # identity of the registry this client reads from; caching layers key on it
    source_id: Optional[SourceId] = None

    @abstractmethod
    async def get_records(
        self,
        package: PackageName,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
    ) -> RegistryResource[IndexRecords]:
        """
        get the index records for a named package from this registry.

        returns NotFound if the package is not present in the index.

        the `before_network` callback must be called right before doing actual
        network requests. it might raise, and the error must be propagated
        immediately. if this client does not perform network requests, the
        callback must not be called at all.

        this method is not expected to internally cache the result, but it is
        not prohibited either. caching is applied by RegistryClientCache.
        """

    @abstractmethod
    async def download(
        self,
        package: PackageId,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
        create_scratch_file: CreateScratchFileCallback,
    ) -> RegistryResource[FileLockGuard]:
        """
        download the package `.tar.zst` file.

        returns a FileLockGuard to the downloaded file, positioned at offset 0.

        `before_network` follows the same rules as in get_records.
        `create_scratch_file` must only be awaited once the client knows it has
        to write a new archive; it lets caching layers decide where the file lives.
        """

    async def supports_publish(self) -> bool:
        """
        state whether packages can be published to this registry.

        this method is permitted to do network lookups, e.g. to fetch registry config.
        """
        return False

    async def publish(self, package: Package, tarball: FileLockGuard) -> None:
        """
        publish a package to this registry.

        may only be called if supports_publish returned True. `tarball` must be
        the just-packaged archive of `package`. the package source is not
        required to match this registry.
        """
        raise ContractViolation("This registry does not support publishing.")
