"""registry clients: http, local filesystem, and the caching layer over either."""
from .resource import RegistryResource, NotFound, InCache, Download, NOT_FOUND, IN_CACHE
from .callbacks import BeforeNetworkCallback, CreateScratchFileCallback, single_use, noop_before_network
from .client import RegistryClient
from .cache import RegistryClientCache
from .http import HttpRegistryClient, RegistryConfig
from .local import LocalRegistryClient

__all__ = [
    "RegistryResource",
    "NotFound",
    "InCache",
    "Download",
    "NOT_FOUND",
    "IN_CACHE",
    "BeforeNetworkCallback",
    "CreateScratchFileCallback",
    "single_use",
    "noop_before_network",
    "RegistryClient",
    "RegistryClientCache",
    "HttpRegistryClient",
    "RegistryConfig",
    "LocalRegistryClient",
]
