"""
Single instance locking.

A well-known lock directory is created atomically with ``mkdir``; whoever
creates it owns the run. The owning PID is written inside it.
"""

import os
import shutil
import logging
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)

PID_FILENAME = 'pid'


class AlreadyRunning(Exception):
    """Raised when another run already holds the lock directory."""
    pass


@dataclass(frozen=True)
class LockHandle:
    path: str
    pid: int

    @property
    def pid_file(self) -> str:
        return os.path.join(self.path, PID_FILENAME)


class LockManager:
    """Mutual exclusion between invocations on the same host."""

    def __init__(self, lock_dir: str):
        self.lock_dir = lock_dir

    def acquire(self) -> LockHandle:
        """
        Take the lock with a single attempt.

        Returns:
            LockHandle owned by the current process

        Raises:
            AlreadyRunning: If the lock directory already exists
        """
        pid_file = os.path.join(self.lock_dir, PID_FILENAME)

        try:
            os.mkdir(self.lock_dir)
        except FileExistsError:
            raise AlreadyRunning(f"Backup is already running. ({pid_file})")

        handle = LockHandle(path=self.lock_dir, pid=os.getpid())
        try:
            with open(handle.pid_file, 'w') as f:
                f.write(f"{handle.pid}\n")
        except OSError:
            shutil.rmtree(self.lock_dir, ignore_errors=True)
            raise

        logger.debug(f"Lock acquired: {self.lock_dir} (pid {handle.pid})")
        return handle

    def release(self, handle: Optional[LockHandle]):
        """Remove the lock directory. Releasing twice is a no-op."""
        if handle is None:
            return

        if not os.path.exists(handle.path):
            logger.debug(f"Lock already released: {handle.path}")
            return

        shutil.rmtree(handle.path)
        logger.info("Removed lock directory")
