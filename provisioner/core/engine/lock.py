"""
Run lock — exclusive, non-blocking flock held for a whole run.

A second concurrent invocation fails fast with ``AlreadyRunning``
instead of touching the state file.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import IO

from provisioner.core.errors import AlreadyRunning, LockError

logger = logging.getLogger(__name__)


class RunLock:
    """Context manager around ``flock(LOCK_EX | LOCK_NB)``.

    The lock file keeps the holder's pid so the error message can say
    who is running. The file itself is never deleted: removing it while
    another process waits on it would break exclusivity.
    """

    def __init__(self, path: Path):
        self._path = path
        self._fh: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            raise LockError(f"Run lock already held by this process: {self._path}")

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self._path, "a+", encoding="utf-8")
        except OSError as e:
            raise LockError(f"Cannot open lock file {self._path}: {e}") from e

        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.seek(0)
            holder = fh.read().strip()
            fh.close()
            raise AlreadyRunning(str(self._path), holder)
        except OSError as e:
            fh.close()
            raise LockError(f"Cannot lock {self._path}: {e}") from e

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\n")
        fh.flush()
        self._fh = fh
        logger.debug("Run lock acquired: %s", self._path)

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            self._fh.seek(0)
            self._fh.truncate()
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
            logger.debug("Run lock released: %s", self._path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
