import json
from pathlib import Path
from typing import Optional

from packaging.version import InvalidVersion, Version

from ..domain.errors import PublishError
from ..domain.models import IndexDependency, Package, PackageId, PackageName, SourceId
from ..registry.client import RegistryClient
from ..ui.progress import ProgressManager
from ..utils.flock import lock_exclusive


def load_manifest(manifest_path: Path) -> Package:
    """
    read a `quarry.json` manifest into a Package.

    expected shape:
        {"name": ..., "version": ..., "description": ..., "license": ...,
         "authors": [...], "homepage": ..., "dependencies": {"name": "req"}}

    raises:
        ValueError: if the manifest is missing required fields or malformed
    """
    try:
        with open(manifest_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid manifest {manifest_path}: {e}") from e

    if "name" not in data or "version" not in data:
        raise ValueError("manifest must include 'name' and 'version'")
    try:
        Version(data["version"])
    except InvalidVersion:
        raise ValueError(f"Invalid version '{data['version']}' in manifest")

    dependencies = [
        IndexDependency(name=name, req=req or "")
        for name, req in data.get("dependencies", {}).items()
    ]
    return Package(
        id=PackageId(
            name=PackageName(data["name"]),
            version=data["version"],
            source=SourceId.for_local(manifest_path.resolve().parent),
        ),
        description=data.get("description", ""),
        license=data.get("license"),
        authors=data.get("authors", []),
        homepage=data.get("homepage"),
        dependencies=dependencies,
    )


class PublishService:
    """handles publishing packaged archives to a registry."""

    def __init__(self, registry_client: RegistryClient, progress_manager: Optional[ProgressManager] = None):
        self.registry_client = registry_client
        self.progress_manager = progress_manager or ProgressManager()

    async def publish(self, package: Package, tarball_path: Path):
        """
        publish an already packaged archive.

        args:
            package: the package the archive was built from
            tarball_path: path to the `.tar.zst` archive

        raises:
            PublishError: if the registry does not accept uploads
            FileNotFoundError: if the archive does not exist
        """
        if not tarball_path.exists():
            raise FileNotFoundError(f"Package archive not found: {tarball_path}")

        if not await self.registry_client.supports_publish():
            raise PublishError(f"registry {self.registry_client.source_id} does not support publishing")

        self.progress_manager.status("Uploading", str(package.id))
        with await lock_exclusive(tarball_path, f"archive {tarball_path.name}") as tarball:
            await self.registry_client.publish(package, tarball)
        self.progress_manager.status("Published", f"{package.name} v{package.version}")
