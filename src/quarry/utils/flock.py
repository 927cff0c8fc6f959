"""scoped file handles holding flock(2) locks."""

import asyncio
import fcntl
import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.05


class FileLockGuard:
    """
    an open file holding a flock; exclusive unless `shared` is set.

    the lock is released when the guard is released, closed, or leaves a
    `with` block; whichever happens first. releasing twice is a no-op.
    """

    def __init__(self, file: BinaryIO, path: Path, description: str, shared: bool = False):
        self._file: Optional[BinaryIO] = file
        self.path = path
        self.description = description
        self.shared = shared

    @property
    def file(self) -> BinaryIO:
        if self._file is None:
            raise ValueError(f"file lock on {self.description} has already been released")
        return self._file

    @property
    def is_locked(self) -> bool:
        return self._file is not None

    def read(self, size: int = -1) -> bytes:
        return self.file.read(size)

    def write(self, data: bytes) -> int:
        return self.file.write(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self.file.seek(offset, whence)

    def flush(self):
        self.file.flush()

    def truncate(self, size: int = 0):
        self.file.truncate(size)

    def release(self):
        if self._file is None:
            return
        file, self._file = self._file, None
        try:
            fcntl.flock(file.fileno(), fcntl.LOCK_UN)
        finally:
            file.close()
        logger.debug(f"released file lock on {self.description}")

    def __enter__(self) -> "FileLockGuard":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def __repr__(self) -> str:
        state = ("shared" if self.shared else "locked") if self.is_locked else "released"
        return f"<FileLockGuard {self.path} ({state})>"


async def _acquire(
    path: Path,
    description: Optional[str],
    shared: bool,
    truncate: bool,
    poll_interval: float,
) -> FileLockGuard:
    path = Path(path)
    description = description or str(path)

    if shared:
        # readers never create the file they are about to read
        file = open(path, "rb")
        operation = fcntl.LOCK_SH
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        file = os.fdopen(fd, "r+b")
        operation = fcntl.LOCK_EX

    try:
        waiting = False
        while True:
            try:
                fcntl.flock(file.fileno(), operation | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if not waiting:
                    logger.info(f"blocking waiting for file lock on {description}")
                    waiting = True
                await asyncio.sleep(poll_interval)
        if truncate:
            file.truncate(0)
        file.seek(0)
    except BaseException:
        file.close()
        raise

    logger.debug(f"acquired {'shared' if shared else 'exclusive'} file lock on {description}")
    return FileLockGuard(file, path, description, shared=shared)


async def lock_exclusive(
    path: Path,
    description: Optional[str] = None,
    truncate: bool = False,
    poll_interval: float = LOCK_POLL_INTERVAL,
) -> FileLockGuard:
    """
    open (creating if needed) `path` for reading and writing and take an exclusive lock on it.

    waiting for a contended lock suspends the calling task instead of
    blocking the event loop. if the task is cancelled while waiting, the file
    is closed and no lock is left behind.

    args:
        path: file to open
        description: human readable name used in log messages
        truncate: empty the file once the lock is held
        poll_interval: seconds between lock attempts while contended

    returns:
        a FileLockGuard positioned at offset 0
    """
    return await _acquire(path, description, False, truncate, poll_interval)


async def lock_shared(
    path: Path,
    description: Optional[str] = None,
    poll_interval: float = LOCK_POLL_INTERVAL,
) -> FileLockGuard:
    """
    open an existing `path` read-only under a shared lock.

    any number of shared guards on one file coexist; they only wait for an
    exclusive holder. raises FileNotFoundError if the file does not exist.
    """
    return await _acquire(path, description, True, False, poll_interval)
