"""result of loading data from a registry."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class NotFound:
    """the requested resource was not found."""


@dataclass(frozen=True)
class InCache:
    """the cache is valid and the cached data should be used."""


@dataclass(frozen=True)
class Download(Generic[T]):
    """
    the cache is out of date, new data was downloaded and should be used from now on.

    `cache_key` is a client-dependent opaque value used to determine whether
    the resource is out of date. None means this client/resource is not cacheable.
    """
    resource: T
    cache_key: Optional[str] = None


RegistryResource = Union[NotFound, InCache, Download[T]]

NOT_FOUND = NotFound()
IN_CACHE = InCache()
