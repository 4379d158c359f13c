"""Single-writer lock for the wiki data file.

This module provides the LockManager class that serialises access to the
data file and backup directory. It combines an in-process threading lock
(the HTTP server may handle requests on several threads) with fcntl.flock
on a lock file beside the data file (so two server processes pointed at
the same folder cannot interleave a backup with a write).
"""

import fcntl
import os
import threading
import time
from pathlib import Path
from typing import Optional

from wikiportable.errors import EXIT_LOCK_ERROR, WikiError
from wikiportable.logger import ErrorCode


class LockError(WikiError):
    """Raised when lock cannot be acquired."""

    status_code = 503
    exit_code = EXIT_LOCK_ERROR
    default_error_code = ErrorCode.LOCK_HELD


class LockManager:
    """
    Manages the exclusive lock guarding the wiki data file.

    The lock file records the PID of the holder for diagnostics. It is
    left in place on release: removing it would let a waiting process
    lock an unlinked inode while a newcomer locks a fresh file.

    Implements context manager protocol for safe lock handling. The lock
    is not reentrant.
    """

    def __init__(self, lock_path: Path, timeout: float = 5):
        """
        Initialize LockManager.

        Args:
            lock_path: Path to lock file
            timeout: Seconds to wait for the lock before raising LockError
        """
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self._thread_lock = threading.Lock()
        self._lock_fd: Optional[int] = None

    def acquire(self) -> bool:
        """
        Acquire the lock, waiting up to the configured timeout.

        Returns True if lock acquired.

        Raises:
            LockError: If the lock is held elsewhere when the timeout expires,
                or the lock file cannot be opened.
        """
        deadline = time.monotonic() + self.timeout

        if not self._thread_lock.acquire(timeout=max(self.timeout, 0)):
            raise LockError(
                f"Data file is busy: lock not released within {self.timeout}s"
            )

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            self._thread_lock.release()
            raise LockError(
                f"Cannot open lock file {self.lock_path}: {e}",
                ErrorCode.LOCK_ACQUIRE_FAILED,
            )

        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    self._thread_lock.release()
                    holder_pid = self.get_lock_holder_pid()
                    if holder_pid:
                        raise LockError(
                            f"Data file locked by process {holder_pid} after {self.timeout}s timeout"
                        )
                    raise LockError(
                        f"Data file locked by another process after {self.timeout}s timeout"
                    )
                time.sleep(0.05)

        self._lock_fd = fd
        self._write_pid()
        return True

    def release(self) -> None:
        """Release the lock."""
        if self._lock_fd is None:
            return

        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        except OSError:
            pass  # closing the descriptor drops the lock anyway

        try:
            os.close(self._lock_fd)
        except OSError:
            pass

        self._lock_fd = None
        self._thread_lock.release()

    @property
    def held(self) -> bool:
        """True while this manager holds the lock."""
        return self._lock_fd is not None

    def is_locked(self) -> bool:
        """Check if lock is currently held (by any process, this one included)."""
        if self.held:
            return True
        if not self.lock_path.exists():
            return False

        try:
            fd = os.open(str(self.lock_path), os.O_RDONLY)
        except OSError:
            return False

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        except BlockingIOError:
            return True
        finally:
            os.close(fd)

    def get_lock_holder_pid(self) -> Optional[int]:
        """Return PID recorded by the last holder, or None."""
        try:
            content = self.lock_path.read_text().strip()
            if content:
                return int(content)
        except (OSError, ValueError):
            pass

        return None

    def _write_pid(self) -> None:
        """Record the current PID in the lock file."""
        if self._lock_fd is None:
            return
        try:
            os.ftruncate(self._lock_fd, 0)
            os.lseek(self._lock_fd, 0, os.SEEK_SET)
            os.write(self._lock_fd, str(os.getpid()).encode())
        except OSError:
            pass  # Best effort

    def __enter__(self) -> "LockManager":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False  # Don't suppress exceptions
