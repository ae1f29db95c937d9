"""
Per-session advisory locks.

One lock file per session id under the lock directory, acquired without
waiting: a second repair or restore of the same session fails fast with
SessionLockedError instead of racing. Repairs of different sessions touch
disjoint subtrees and never contend.

The file lock covers other processes; the in-process registry covers
coroutines and threads of this process sharing one lock file.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from session_repair.exceptions import SessionLockedError

__all__ = ['SessionLockRegistry']


class SessionLockRegistry:
    """Non-blocking per-session lock, process-wide and cross-process."""

    _held: set[str] = set()
    _guard = threading.Lock()

    def __init__(self, lock_dir: Path) -> None:
        self.lock_dir = lock_dir

    def is_locked(self, session_id: str) -> bool:
        """True if this process or another one currently holds the session."""
        key = str(self._lock_path(session_id))
        with self._guard:
            if key in self._held:
                return True
        if not self.lock_dir.exists():
            return False
        candidate = FileLock(self._lock_path(session_id), timeout=0)
        try:
            candidate.acquire()
        except Timeout:
            return True
        candidate.release()
        return False

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        """
        Hold the session lock for the duration of the block.

        Raises:
            SessionLockedError: If the session is already held
        """
        key = str(self._lock_path(session_id))
        with self._guard:
            if key in self._held:
                raise SessionLockedError(session_id)
            self._held.add(key)

        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            lock = FileLock(self._lock_path(session_id), timeout=0)
            try:
                lock.acquire()
            except Timeout as e:
                raise SessionLockedError(session_id) from e

            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                self._held.discard(key)

    def _lock_path(self, session_id: str) -> Path:
        return self.lock_dir / f'{session_id}.lock'
