from __future__ import annotations

import fcntl
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)


class Lock(Protocol):
    def setup(self) -> bool:
        ...

    def teardown(self) -> bool:
        ...

    def acquire(self, exclusive: bool, non_blocking: bool = False) -> bool:
        ...

    def release(self) -> bool:
        ...


@contextmanager
def hold(lock: Lock, *, exclusive: bool, non_blocking: bool = False) -> Iterator[bool]:
    """Acquire `lock` for the duration of the block. Yields whether the lock is held."""
    acquired = lock.acquire(exclusive, non_blocking)
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()


class FileLock:
    """
    Advisory lock on a file (flock). Only protects against callers that use the same lock file.

    The lock file must live outside of the cache directory, otherwise a flush would remove it.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._handle: Optional[IO[bytes]] = None

    @property
    def path(self) -> Path:
        return self._path

    def setup(self) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch(exist_ok=True)
        except OSError:
            logger.warning("Failed to create lock file. path=%s", self._path, exc_info=True)
            return False
        return True

    def teardown(self) -> bool:
        try:
            self._path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to remove lock file. path=%s", self._path, exc_info=True)
            return False
        return True

    def acquire(self, exclusive: bool, non_blocking: bool = False) -> bool:
        if self._handle is not None:
            logger.warning("Lock is already held by this instance. path=%s", self._path)
            return False

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self._path, "ab")
        except OSError:
            logger.warning("Failed to open lock file. path=%s", self._path, exc_info=True)
            return False

        operation = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        if non_blocking:
            operation |= fcntl.LOCK_NB

        try:
            fcntl.flock(handle.fileno(), operation)
        except BlockingIOError:
            handle.close()
            logger.debug("Lock is busy. path=%s exclusive=%s", self._path, exclusive)
            return False
        except OSError:
            handle.close()
            logger.warning("Failed to acquire lock. path=%s", self._path, exc_info=True)
            return False

        self._handle = handle
        return True

    def release(self) -> bool:
        if self._handle is None:
            return False
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        except OSError:
            logger.warning("Failed to release lock. path=%s", self._path, exc_info=True)
            return False
        finally:
            self._handle.close()
            self._handle = None
        return True


class DummyLock:
    """Pretends to lock. For single-worker deployments."""

    def setup(self) -> bool:
        return True

    def teardown(self) -> bool:
        return True

    def acquire(self, exclusive: bool, non_blocking: bool = False) -> bool:
        return True

    def release(self) -> bool:
        return True
