"""shared fixtures: temporary directories, configs and a populated local registry."""
import asyncio
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from quarry.config import Config
from quarry.domain.models import IndexDependency, Package, PackageId, PackageName, SourceId
from quarry.registry.local import LocalRegistryClient
from quarry.utils.flock import lock_exclusive

FOO_ARCHIVE = b"foo archive bytes v1.0.0" * 64
FOO_ARCHIVE_2 = b"foo archive bytes v2.0.0" * 64
BAR_ARCHIVE = b"bar archive bytes" * 16


def make_package(name: str, version: str, deps=None) -> Package:
    return Package(
        id=PackageId(
            name=PackageName(name),
            version=version,
            source=SourceId.for_local("/src/" + name),
        ),
        description=f"{name} package",
        dependencies=[IndexDependency(name=n, req=r) for n, r in (deps or {}).items()],
    )


def publish_local(client: LocalRegistryClient, package: Package, data: bytes, workdir: Path):
    """publish `data` as the archive of `package` into a local registry."""
    tarball_path = workdir / package.id.tarball_name
    tarball_path.write_bytes(data)

    async def run():
        with await lock_exclusive(tarball_path) as tarball:
            await client.publish(package, tarball)

    asyncio.run(run())


@pytest.fixture
def temp_dir():
    """create a temporary directory."""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    # cleanup
    if temp_dir.exists():
        shutil.rmtree(temp_dir)


@pytest.fixture
def config(temp_dir):
    return Config(cache_dir=temp_dir / "cache")


@pytest.fixture
def local_registry(temp_dir, config):
    """local registry containing foo 1.0.0, foo 2.0.0 and bar 0.1.0."""
    root = temp_dir / "registry"
    client = LocalRegistryClient(root, config)
    workdir = temp_dir / "work"
    workdir.mkdir()
    publish_local(client, make_package("foo", "1.0.0"), FOO_ARCHIVE, workdir)
    publish_local(client, make_package("foo", "2.0.0", {"bar": ">=0.1"}), FOO_ARCHIVE_2, workdir)
    publish_local(client, make_package("bar", "0.1.0"), BAR_ARCHIVE, workdir)
    return client
