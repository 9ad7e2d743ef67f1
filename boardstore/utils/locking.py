"""
Locking utilities for serialising mutations of one entity.

Platform Support:
    ProcessLock requires POSIX systems (Linux, macOS). Windows is not supported.

Provides:
- KeyedLocks: in-process registry of per-key locks, created on demand
- ProcessLock: file-based lock for cross-process exclusion, with timeout
  support and exponential backoff. The kernel drops an flock when its holder
  exits, so a dead holder never leaves the lock taken and the file itself is
  never removed.

Logging:
    This module uses Python's standard logging. Configure via:

        import logging
        logging.getLogger('boardstore.utils.locking').setLevel(logging.DEBUG)

    Log levels:
    - DEBUG: Lock acquisition attempts
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """Raised when a lock could not be acquired within its deadline."""

    def __init__(self, key: str, timeout: Optional[float]):
        super().__init__(f"Timed out acquiring lock for '{key}' after {timeout}s")
        self.key = key
        self.timeout = timeout


class KeyedLocks:
    """
    Registry of reentrant locks keyed by entity ID.

    Locks are created on first use and dropped with discard(). Operations on
    different keys never contend.

    Usage:
        locks = KeyedLocks()
        with locks.hold("T-123", timeout=5.0):
            # read-modify-write of T-123
            pass
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for key for the duration of the block.

        Args:
            key: Lock key (entity ID)
            timeout: Seconds to wait; None waits forever

        Raises:
            LockTimeout: If the lock is not acquired in time
        """
        lock = self._lock_for(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise LockTimeout(key, timeout)
        try:
            yield
        finally:
            lock.release()

    def discard(self, key: str) -> None:
        """Forget the lock for a key (after the entity is removed)."""
        with self._guard:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ProcessLock:
    """
    Simple file-based lock for process safety.

    Uses fcntl.flock() on POSIX systems. The lock file records the holder's
    PID for diagnostics only; whether the lock is taken is decided by the
    flock alone, never by the file's content.

    Usage:
        lock = ProcessLock(Path("/path/to/.lock"))
        if lock.acquire(timeout=5.0):
            try:
                # Critical section
            finally:
                lock.release()
    """

    def __init__(self, lock_path: Path):
        """
        Initialize process lock.

        Args:
            lock_path: Path to lock file
        """
        self.lock_path = Path(lock_path)
        self._fd = None
        self._thread_lock = threading.Lock()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire the lock, retrying with exponential backoff until timeout.

        Args:
            timeout: Timeout in seconds. If None, single non-blocking attempt.

        Returns:
            True if lock acquired, False otherwise
        """
        with self._thread_lock:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)

            if timeout is None:
                return self._try_acquire_once()

            start_time = time.monotonic()
            backoff_ms = 10
            max_backoff_ms = 500

            while True:
                if self._try_acquire_once():
                    return True

                elapsed = time.monotonic() - start_time
                if elapsed >= timeout:
                    return False

                time.sleep(min(backoff_ms / 1000.0, timeout - elapsed))
                backoff_ms = min(backoff_ms * 2, max_backoff_ms)

    def _try_acquire_once(self) -> bool:
        """Try to acquire lock once (non-blocking)."""
        if self._fd is not None:
            return False

        fd = open(self.lock_path, 'a+')
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fd.close()
            return False

        # Holder info is diagnostic only, no fsync
        fd.seek(0)
        fd.truncate()
        json.dump({"pid": os.getpid(), "acquired_at": time.time()}, fd)
        fd.flush()
        self._fd = fd
        logger.debug(f"Acquired lock {self.lock_path}")
        return True

    def holder(self) -> Optional[dict]:
        """PID and acquisition time last written to the lock file, if readable."""
        try:
            content = self.lock_path.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            info = json.loads(content)
        except json.JSONDecodeError:
            return None
        return info if isinstance(info, dict) else None

    def release(self) -> None:
        """Release the lock."""
        with self._thread_lock:
            if self._fd is None:
                return
            try:
                fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None

    def is_locked(self) -> bool:
        """Check if lock is currently held by this instance."""
        return self._fd is not None

    @contextmanager
    def hold(self, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            LockTimeout: If the lock is not acquired in time
        """
        if not self.acquire(timeout=timeout):
            raise LockTimeout(str(self.lock_path), timeout)
        try:
            yield
        finally:
            self.release()
