"""callbacks handed to registry clients for a single request."""

import threading
from typing import Awaitable, Callable, TypeVar

from ..config import Config
from ..domain.errors import ContractViolation
from ..utils.flock import FileLockGuard

# invoked right before the client performs network I/O. raising aborts the request.
BeforeNetworkCallback = Callable[[], None]

# invoked when a download is about to write a new archive to disk.
CreateScratchFileCallback = Callable[[Config], Awaitable[FileLockGuard]]

F = TypeVar("F", bound=Callable)


def single_use(callback: F, name: str = "callback") -> F:
    """
    wrap `callback` so that calling it a second time raises ContractViolation.

    clients consume request callbacks; invoking one twice is a bug.
    """
    lock = threading.Lock()
    state = {"called": False}

    def guarded(*args, **kwargs):
        with lock:
            if state["called"]:
                raise ContractViolation(f"{name} must not be invoked more than once")
            state["called"] = True
        return callback(*args, **kwargs)

    guarded.__wrapped__ = callback
    guarded.__name__ = getattr(callback, "__name__", name)
    return guarded


def noop_before_network() -> None:
    """before_network callback for callers that do not care."""
    return None
