"""Advisory file locks serialising mutations of an installation."""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .errors import ProvctlError
from .metadata.persistence import metadata_dir

LOCK_FILE_NAME = ".provctl.lock"
LOCK_POLL_INTERVAL = 0.05


class LockTimeoutError(ProvctlError):
    """Raised when a lock cannot be acquired before the timeout."""


@dataclass(slots=True)
class LockHandle:
    """An acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Acquire exclusive ``flock`` locks with a timeout."""

    def __init__(self, default_timeout: float = 30.0) -> None:
        self.default_timeout = default_timeout

    @contextmanager
    def installation_lock(
        self,
        installation_root: Path,
        *,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Hold the lock of the installation rooted at *installation_root*."""
        lock_path = metadata_dir(installation_root) / LOCK_FILE_NAME
        with self.lock(lock_path, timeout=timeout) as handle:
            yield handle

    @contextmanager
    def lock(self, lock_path: Path, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold an exclusive lock on *lock_path*, creating it when needed."""
        effective_timeout = self.default_timeout if timeout is None else timeout
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            wait_ms = self._acquire(fd, lock_path, effective_timeout)
            self._write_metadata(fd, lock_path)
            try:
                yield LockHandle(path=lock_path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @staticmethod
    def _acquire(fd: int, lock_path: Path, timeout: float) -> int:
        started = time.monotonic()
        deadline = started + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Timed out after {timeout:.1f}s waiting for lock {lock_path}"
                    ) from None
                time.sleep(LOCK_POLL_INTERVAL)
                continue
            return int((time.monotonic() - started) * 1000)

    @staticmethod
    def _write_metadata(fd: int, lock_path: Path) -> None:
        payload = json.dumps(
            {
                "pid": os.getpid(),
                "path": str(lock_path),
                "acquired_at": datetime.now(tz=UTC).isoformat(),
            }
        ).encode("utf-8")
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, payload)


__all__ = ["LOCK_FILE_NAME", "LockHandle", "LockManager", "LockTimeoutError"]
