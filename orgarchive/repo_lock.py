"""
Per-repository locking for archive-org.

Branch checkout state inside ``repo/`` is shared mutable state with no
locking of its own, so every worker holds an exclusive lock file next to it
for as long as it touches the working copy.
"""

import os
import subprocess
import time
import logging
import threading
from pathlib import Path

from .errors import RepositoryBusyError
from .platform import is_windows


class RepositoryLock:
    """
    Exclusive lock on one repository's archive directory.

    The lock file is created atomically with ``O_CREAT | O_EXCL`` and holds the
    owner's PID so that locks left behind by a dead process can be reclaimed.
    """

    def __init__(self, lock_file_path: Path, timeout: float = 0.0):
        """
        Initialize repository lock.

        Args:
            lock_file_path: Path to the lock file
            timeout: Maximum time to wait for the lock (seconds); 0 tries once
        """
        self.lock_file_path = lock_file_path
        self.timeout = timeout
        self.logger = logging.getLogger('orgarchive.repo_lock')
        self._lock_acquired = False

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True if lock was acquired, False if another live process holds it
        """
        deadline = time.time() + self.timeout
        self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            if self._try_create() or (self._reclaim_stale_lock() and self._try_create()):
                self._lock_acquired = True
                self.logger.debug(f"Acquired lock: {self.lock_file_path}")
                return True
            if time.time() >= deadline:
                break
            time.sleep(0.1)

        self.logger.warning(f"Repository is locked by another worker: {self.lock_file_path}")
        return False

    def _try_create(self) -> bool:
        try:
            fd = os.open(
                self.lock_file_path,
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o644
            )
        except FileExistsError:
            return False

        with os.fdopen(fd, 'w') as f:
            f.write(f"locked_by_pid_{os.getpid()}_thread_{threading.get_ident()}")
        return True

    def _reclaim_stale_lock(self) -> bool:
        """Remove the lock file if its owner is gone. Returns True if removed."""
        try:
            lock_content = self.lock_file_path.read_text()
            pid = int(lock_content.split("locked_by_pid_")[1].split("_")[0])
        except FileNotFoundError:
            return True
        except (ValueError, IndexError, OSError):
            self.logger.warning(f"Cleaning up unparseable lock file: {self.lock_file_path}")
            self.lock_file_path.unlink(missing_ok=True)
            return True

        if self._is_process_running(pid):
            return False

        self.logger.warning(f"Cleaning up lock from dead process {pid}: {self.lock_file_path}")
        self.lock_file_path.unlink(missing_ok=True)
        return True

    @staticmethod
    def _is_process_running(pid: int) -> bool:
        if pid == os.getpid():
            return True
        try:
            if is_windows():
                result = subprocess.run(
                    ["tasklist", "/FI", f"PID eq {pid}"],
                    capture_output=True,
                    text=True,
                    timeout=5
                )
                return str(pid) in result.stdout
            os.kill(pid, 0)
            return True
        except PermissionError:
            # Process exists but belongs to someone else
            return True
        except (OSError, subprocess.TimeoutExpired):
            return False

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        if not self._lock_acquired:
            return
        self.lock_file_path.unlink(missing_ok=True)
        self._lock_acquired = False
        self.logger.debug(f"Released lock: {self.lock_file_path}")

    def is_locked(self) -> bool:
        """Check if the lock is currently held by this instance."""
        return self._lock_acquired

    def __enter__(self):
        if not self.acquire():
            raise RepositoryBusyError(
                f"lock {self.lock_file_path} is held by another worker",
                lock_file=str(self.lock_file_path),
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
