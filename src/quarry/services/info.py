from typing import Optional
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..domain.errors import PackageNotFoundError
from ..domain.models import IndexRecords, PackageName
from ..registry.callbacks import noop_before_network
from ..registry.client import RegistryClient
from ..registry.resource import Download, NotFound


class InfoService:
    """handles fetching and displaying package index records."""

    def __init__(self, registry_client: RegistryClient, console: Optional[Console] = None):
        self.registry_client = registry_client
        self.console = console or Console()

    async def get_records(self, package_name: str) -> IndexRecords:
        """
        fetch the index records of a package.

        raises:
            PackageNotFoundError: if the registry does not know the package
        """
        name = PackageName(package_name)
        result = await self.registry_client.get_records(name, None, noop_before_network)
        if isinstance(result, NotFound):
            raise PackageNotFoundError(package_name)
        if not isinstance(result, Download):
            # we never send a cache key, so the client cannot answer InCache
            raise RuntimeError(f"unexpected registry answer for {package_name}: {result!r}")
        return result.resource

    async def show_info(self, package_name: str, version: Optional[str] = None):
        """
        fetch and display information about a package.

        args:
            package_name: name of the package
            version: optional specific version, defaults to the latest
        """
        records = await self.get_records(package_name)
        versions = records.versions()
        if not versions:
            raise PackageNotFoundError(package_name)

        target_version = version or versions[-1]
        record = records.find(target_version)
        if record is None:
            raise PackageNotFoundError(f"{package_name} v{target_version}")

        grid = Table.grid(expand=True)
        grid.add_column(style="bold cyan", justify="right")
        grid.add_column(style="white")

        grid.add_row("Name:", package_name)
        grid.add_row("Version:", record.v)
        grid.add_row("Checksum:", record.cksum)

        if record.deps:
            grid.add_row("Dependencies:", ", ".join(f"{d.name} {d.req}".strip() for d in record.deps))
        else:
            grid.add_row("Dependencies:", "None")

        if not version:
            other_versions = [v for v in reversed(versions) if v != target_version][:5]
            if other_versions:
                grid.add_row("Other Versions:", ", ".join(other_versions))

        self.console.print(Panel(grid, title=f"Package Info: {package_name}", border_style="cyan"))
