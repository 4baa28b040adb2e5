"""Advisory inter-process file locks."""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path
from typing import IO, Optional

LOGGER = logging.getLogger(__name__)


class LockTimeout(RuntimeError):
    """The lock is held by another process."""


def _try_lock(handle: IO[str]) -> bool:
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileLock:
    """Exclusive lock on ``path``; released automatically if the process dies.

    ``timeout=0`` fails immediately when the lock is held, ``None`` waits
    forever.
    """

    def __init__(self, path: Path, *, timeout: Optional[float] = 10.0, poll_interval: float = 0.05) -> None:
        self.path = path
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this object")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while not _try_lock(handle):
            if deadline is not None and time.monotonic() >= deadline:
                handle.close()
                raise LockTimeout(f"Timed out waiting for lock {self.path}")
            time.sleep(self._poll_interval)
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            _unlock(handle)
        except OSError:
            LOGGER.debug("Unlock of %s failed; closing the handle releases it", self.path)
        finally:
            handle.close()

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
