import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..config import Config
from ..domain.errors import (
    AuthenticationError,
    ContractViolation,
    OfflineError,
    PublishError,
    RegistryError,
)
from ..domain.models import IndexRecords, Package, PackageId, PackageName, SourceId
from ..ui.progress import ProgressManager
from ..utils.flock import FileLockGuard
from .callbacks import BeforeNetworkCallback, CreateScratchFileCallback
from .client import RegistryClient
from .resource import IN_CACHE, NOT_FOUND, Download, RegistryResource

logger = logging.getLogger(__name__)

CONFIG_PATH = "config.json"

ETAG_PREFIX = "etag:"
LAST_MODIFIED_PREFIX = "last-modified:"


class RegistryConfig(BaseModel):
    """the `config.json` document served at the root of an http registry."""
    version: int = 1
    # url templates; may contain {package}, {version} and {prefix}
    index: str
    dl: str
    upload: Optional[str] = None


def index_prefix(name: str) -> str:
    """cargo-style directory prefix for a package name."""
    name = name.lower()
    if len(name) <= 2:
        return str(len(name))
    if len(name) == 3:
        return f"3/{name[0]}"
    return f"{name[0:2]}/{name[2:4]}"


def expand_template(template: str, package: PackageName, version: Optional[str] = None) -> str:
    name = str(package)
    url = template.replace("{package}", name).replace("{prefix}", index_prefix(name))
    if version is not None:
        url = url.replace("{version}", version)
    return url


def cache_key_from_response(response: httpx.Response) -> Optional[str]:
    etag = response.headers.get("etag")
    if etag:
        return ETAG_PREFIX + etag
    last_modified = response.headers.get("last-modified")
    if last_modified:
        return LAST_MODIFIED_PREFIX + last_modified
    return None


def conditional_headers(cache_key: Optional[str]) -> Dict[str, str]:
    if not cache_key:
        return {}
    if cache_key.startswith(ETAG_PREFIX):
        return {"If-None-Match": cache_key[len(ETAG_PREFIX):]}
    if cache_key.startswith(LAST_MODIFIED_PREFIX):
        return {"If-Modified-Since": cache_key[len(LAST_MODIFIED_PREFIX):]}
    # not one of ours, e.g. issued by another backend; do an unconditional fetch
    logger.debug(f"ignoring unrecognised cache key: {cache_key}")
    return {}


def _check_status(response: httpx.Response, what: str):
    if response.status_code != 200:
        raise RegistryError(
            f"failed to fetch {what}: HTTP {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
        )


@asynccontextmanager
async def _translate_errors(what: str):
    try:
        yield
    except httpx.HTTPError as e:
        raise RegistryError(f"could not reach registry while fetching {what}: {e}") from e
    except ValidationError as e:
        raise RegistryError(f"could not read {what}: {e}") from e


class HttpRegistryClient(RegistryClient):
    """registry client talking to a static or dynamic http registry."""

    def __init__(
        self,
        url: str,
        config: Config,
        client: Optional[httpx.AsyncClient] = None,
        progress_manager: Optional[ProgressManager] = None,
    ):
        self.base_url = url.rstrip("/")
        self.source_id = SourceId.for_registry(url)
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.http_timeout, follow_redirects=True)
        self.progress_manager = progress_manager or ProgressManager(quiet=True)
        self._registry_config: Optional[RegistryConfig] = None
        self._config_lock = asyncio.Lock()

    async def __aenter__(self) -> "HttpRegistryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    def _resolve(self, path: str) -> str:
        # relative to the index root; absolute urls and paths work as usual
        return str(httpx.URL(self.base_url + "/").join(path))

    async def registry_config(self) -> RegistryConfig:
        """fetch (once) and return the registry's config.json."""
        async with self._config_lock:
            if self._registry_config is None:
                if self.config.offline:
                    raise OfflineError(f"cannot fetch the config of {self.base_url} in offline mode")
                url = f"{self.base_url}/{CONFIG_PATH}"
                logger.debug(f"fetching registry config from {url}")
                async with _translate_errors("registry config"):
                    response = await self.client.get(url)
                    _check_status(response, f"registry config from {url}")
                    self._registry_config = RegistryConfig.model_validate_json(response.content)
            return self._registry_config

    async def get_records(
        self,
        package: PackageName,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
    ) -> RegistryResource[IndexRecords]:
        before_network()

        what = f"index records for {package}"
        async with _translate_errors(what):
            config = await self.registry_config()
            url = self._resolve(expand_template(config.index, package))
            logger.debug(f"GET {url} (cache key: {cache_key})")
            response = await self.client.get(url, headers=conditional_headers(cache_key))

            if response.status_code == 404:
                return NOT_FOUND
            if response.status_code == 304:
                if not cache_key:
                    raise RegistryError(f"registry answered 304 for {what} without a conditional request")
                return IN_CACHE
            _check_status(response, what)

            records = IndexRecords.model_validate_json(response.content)
        return Download(records, cache_key_from_response(response))

    async def download(
        self,
        package: PackageId,
        cache_key: Optional[str],
        before_network: BeforeNetworkCallback,
        create_scratch_file: CreateScratchFileCallback,
    ) -> RegistryResource[FileLockGuard]:
        before_network()

        what = f"archive of {package}"
        async with _translate_errors(what):
            config = await self.registry_config()
            url = self._resolve(expand_template(config.dl, package.name, package.version))
            logger.debug(f"GET {url} (cache key: {cache_key})")

            async with self.client.stream("GET", url, headers=conditional_headers(cache_key)) as response:
                if response.status_code == 404:
                    return NOT_FOUND
                if response.status_code == 304:
                    if not cache_key:
                        raise RegistryError(f"registry answered 304 for {what} without a conditional request")
                    return IN_CACHE
                _check_status(response, what)

                guard = await create_scratch_file(self.config)
                try:
                    await self._stream_into(response, guard, package)
                except BaseException:
                    guard.release()
                    raise

        return Download(guard, cache_key_from_response(response))

    async def _stream_into(self, response: httpx.Response, guard: FileLockGuard, package: PackageId):
        total = None
        if "content-length" in response.headers:
            total = int(response.headers["content-length"])

        with self.progress_manager.download_progress() as progress:
            task_id = progress.add_task(f"downloading {package.name} v{package.version}", total=total)
            async for chunk in response.aiter_bytes():
                guard.write(chunk)
                progress.update(task_id, advance=len(chunk))

        guard.flush()
        guard.seek(0)

    async def supports_publish(self) -> bool:
        config = await self.registry_config()
        return config.upload is not None

    async def publish(self, package: Package, tarball: FileLockGuard) -> None:
        config = await self.registry_config()
        if config.upload is None:
            raise ContractViolation("This registry does not support publishing.")

        token = self.config.registry_token
        if not token:
            raise AuthenticationError(
                "missing registry token; set QUARRY_TOKEN or add it to the config file"
            )

        tarball.seek(0)
        data = tarball.read()
        url = self._resolve(expand_template(config.upload, package.name, package.version))
        logger.debug(f"POST {url} ({len(data)} bytes)")

        async with _translate_errors(f"publish of {package.id}"):
            response = await self.client.post(
                url,
                headers={"Authorization": token},
                data={"metadata": package.model_dump_json()},
                files={"file": (package.id.tarball_name, data, "application/octet-stream")},
            )

        self._check_publish_status(response, package)
        logger.debug(f"published {package.id} to {self.base_url}")

    def _check_publish_status(self, response: httpx.Response, package: Package):
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 401:
            raise AuthenticationError("invalid or expired registry token", status_code=status)
        if status == 403:
            raise PublishError(
                f"not permitted to publish {package.name} to this registry", status_code=status
            )
        if status in (400, 409):
            raise PublishError(
                f"registry refused {package.id}: {response.text.strip() or 'bad request'}",
                status_code=status,
            )
        if status == 413:
            raise PublishError(f"package {package.id} is too large", status_code=status)
        raise RegistryError(
            f"failed to publish {package.id}: HTTP {status} {response.reason_phrase}",
            status_code=status,
        )
