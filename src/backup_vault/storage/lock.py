"""
Single-writer directory lock.

A vault is locked while a file named ``lock`` exists in its root. The
file is created with O_CREAT|O_EXCL, so at most one process can win it.
Waiters sleep on a filesystem watch for the file's deletion instead of
busy-polling.

Lock file format (JSON, for diagnosis only):
{
    "pid": 12345,
    "hostname": "backup-host",
    "acquired_at": "2026-01-15T10:30:00+00:00"
}
"""

import datetime
import json
import logging
import os
import socket
import threading
import time
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import LockNotHeldError, LockTimeoutError, StorageError
from .layout import LOCK_NAME

logger = logging.getLogger(__name__)


class _LockReleaseHandler(FileSystemEventHandler):
    """Sets an event when the watched lock file goes away."""

    def __init__(self, lock_path: Path, released: threading.Event):
        super().__init__()
        self.lock_path = lock_path
        self.released = released

    def _matches(self, path) -> bool:
        return Path(os.fsdecode(path)) == self.lock_path

    def on_deleted(self, event):
        if self._matches(event.src_path):
            self.released.set()

    def on_moved(self, event):
        if self._matches(event.src_path):
            self.released.set()


class DirectoryLock:
    """
    Exclusive lock over a vault directory.

    States: unlocked -> locked (try_lock/lock_blocking) -> unlocked (unlock).
    Every successful lock must be paired with exactly one unlock(); use the
    context manager form to guarantee it.

    Attributes:
        RETRY_INTERVAL_SECONDS: Longest sleep between two acquisition
            attempts while waiting, in case a deletion event is missed.
    """

    RETRY_INTERVAL_SECONDS = 1.0

    def __init__(self, vault_dir: str | Path):
        self.vault_dir = Path(vault_dir).resolve()
        self.lock_path = self.vault_dir / LOCK_NAME
        self._held = False

    @property
    def locked(self) -> bool:
        """Whether this handle currently holds the lock."""
        return self._held

    def try_lock(self) -> bool:
        """
        Attempt to create the lock file.

        Returns True if the lock was acquired, False if it already exists.

        Raises StorageError for any other failure.
        """
        try:
            fd = os.open(
                str(self.lock_path),
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o644,
            )
        except FileExistsError:
            return False
        except OSError as e:
            raise StorageError("create_lock", str(self.lock_path), e)

        try:
            os.write(fd, self._holder_json().encode())
            os.fsync(fd)
        except OSError as e:
            os.close(fd)
            self.lock_path.unlink(missing_ok=True)
            raise StorageError("write_lock", str(self.lock_path), e)
        os.close(fd)

        self._held = True
        logger.debug("Acquired lock %s", self.lock_path)
        return True

    def lock_blocking(self, timeout: Optional[float] = None) -> None:
        """
        Acquire the lock, waiting for the current holder to release it.

        Args:
            timeout: maximum seconds to wait; None waits forever.

        Raises:
            LockTimeoutError: if the lock is still held at the deadline.
            StorageError: if the lock file cannot be created.
        """
        if self.try_lock():
            return

        deadline = None if timeout is None else time.monotonic() + timeout
        released = threading.Event()
        observer = Observer()
        observer.schedule(
            _LockReleaseHandler(self.lock_path, released),
            str(self.vault_dir),
            recursive=False,
        )
        observer.start()

        holder = self.read_holder()
        logger.info(
            "Vault %s is locked by pid %s on %s, waiting",
            self.vault_dir, holder.get('pid'), holder.get('hostname'),
        )

        try:
            while True:
                # Re-check after the watch is in place, so a release in
                # between cannot be missed.
                released.clear()
                if self.try_lock():
                    logger.info("Acquired lock %s after waiting", self.lock_path)
                    return

                wait = self.RETRY_INTERVAL_SECONDS
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LockTimeoutError(str(self.vault_dir), timeout, self.read_holder())
                    wait = min(wait, remaining)

                released.wait(wait)
        finally:
            observer.stop()
            observer.join()

    def unlock(self) -> None:
        """
        Release the lock by deleting the lock file.

        Raises:
            LockNotHeldError: if this handle does not hold the lock.
            StorageError: if the lock file cannot be deleted.
        """
        if not self._held:
            raise LockNotHeldError(str(self.lock_path))

        try:
            self.lock_path.unlink()
        except OSError as e:
            raise StorageError("remove_lock", str(self.lock_path), e)

        self._held = False
        logger.debug("Released lock %s", self.lock_path)

    def read_holder(self) -> dict:
        """
        Read who holds the lock, for diagnostics.

        Returns an empty dict if the file is gone or unreadable.
        """
        try:
            data = json.loads(self.lock_path.read_text())
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _holder_json() -> str:
        return json.dumps({
            'pid': os.getpid(),
            'hostname': socket.gethostname(),
            'acquired_at': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        })

    def __enter__(self) -> 'DirectoryLock':
        self.lock_blocking()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unlock()

    def __repr__(self) -> str:
        state = "locked" if self._held else "unlocked"
        return f"DirectoryLock(path={self.lock_path}, {state})"
