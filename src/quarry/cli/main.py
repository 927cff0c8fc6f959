import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from ..config import Config, load_config
from ..domain.errors import QuarryError
from ..domain.models import SourceId
from ..registry.cache import RegistryClientCache, clear_cache
from ..registry.client import RegistryClient
from ..registry.http import HttpRegistryClient
from ..registry.local import LocalRegistryClient
from ..services.fetch import FetchService
from ..services.info import InfoService
from ..services.publish import PublishService, load_manifest
from ..ui.progress import ProgressManager

app = typer.Typer(help="Fetch, cache and publish packages from quarry registries.")
cache_app = typer.Typer()
console = Console()

app.add_typer(cache_app, name="cache", help="Manage the local registry cache")

T = TypeVar("T")


def _registry_location(config: Config) -> str:
    url = config.registry_url
    if url.startswith("file://"):
        url = url[len("file://"):]
    return url


def registry_source(config: Config) -> SourceId:
    """source id of the configured registry, without opening any connection."""
    url = _registry_location(config)
    if "://" in url:
        return SourceId.for_registry(url)
    return SourceId.for_local(Path(url).expanduser().resolve())


def build_client(config: Config, progress_manager: ProgressManager) -> RegistryClientCache:
    """cached client for the configured registry: a url or a local directory."""
    url = _registry_location(config)
    if "://" in url:
        inner: RegistryClient = HttpRegistryClient(url, config, progress_manager=progress_manager)
    else:
        inner = LocalRegistryClient(Path(url).expanduser(), config)
    return RegistryClientCache(inner, config, progress_manager)


def run_with_client(config: Config, action: Callable[[RegistryClientCache], Awaitable[T]]) -> T:
    progress_manager = ProgressManager(console)

    async def runner():
        client = build_client(config, progress_manager)
        try:
            return await action(client)
        finally:
            if isinstance(client.client, HttpRegistryClient):
                await client.client.aclose()

    try:
        return asyncio.run(runner())
    except (QuarryError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


@app.callback()
def main_callback(
    ctx: typer.Context,
    registry: str = typer.Option(None, "--registry", help="Registry URL or local registry directory"),
    offline: bool = typer.Option(False, "--offline", help="Never touch the network"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log cache and network decisions"),
):
    """load configuration shared by every command."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )
    ctx.obj = load_config(registry_url=registry, offline=offline or None)


@app.command()
def info(
    ctx: typer.Context,
    package_name: str,
    version: str = typer.Argument(None, help="Optional specific version"),
):
    """
    show index records of a package.
    """
    config: Config = ctx.obj
    run_with_client(config, lambda client: InfoService(client, console).show_info(package_name, version))


@app.command()
def fetch(ctx: typer.Context, package_name: str, version: str):
    """
    download a package archive into the cache.
    """
    config: Config = ctx.obj
    fetched = run_with_client(config, lambda client: FetchService(client, config).fetch(package_name, version))
    console.print(Panel.fit(
        f"[bold green]Fetched {fetched.package.name} v{fetched.package.version}[/bold green]\n"
        f"Path: {fetched.path}\n"
        f"Checksum: {fetched.checksum}",
        border_style="green",
    ))


@app.command()
def publish(
    ctx: typer.Context,
    tarball: Path = typer.Argument(..., help="Packaged .tar.zst archive"),
    manifest: Path = typer.Option(Path("quarry.json"), "--manifest", help="Package manifest"),
):
    """
    publish a packaged archive to the registry.
    """
    config: Config = ctx.obj
    try:
        package = load_manifest(manifest)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error reading manifest:[/red] {e}")
        raise typer.Exit(code=1)

    run_with_client(
        config,
        lambda client: PublishService(client, ProgressManager(console)).publish(package, tarball),
    )


@cache_app.command("clear")
def cache_clear(ctx: typer.Context):
    """
    clear cached index records and archives of the configured registry.
    """
    config: Config = ctx.obj
    source = registry_source(config)
    clear_cache(config, source)
    console.print(f"[green]✓ Cache cleared for {source}[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
