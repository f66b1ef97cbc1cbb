"""In-memory exclusive locks for uploads.

Locks live only as long as the locker object and vanish when the process ends.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .errors import FileLockedError


class MemoryLocker:
    """Holds the set of currently locked upload ids."""

    def __init__(self) -> None:
        self._locks: set[str] = set()
        self._mutex = threading.Lock()

    def new_lock(self, id: str) -> "MemoryLock":
        """Return a lock object for the given upload id."""
        return MemoryLock(self, id)

    def _acquire(self, id: str) -> None:
        with self._mutex:
            if id in self._locks:
                raise FileLockedError()
            self._locks.add(id)

    def _release(self, id: str) -> None:
        with self._mutex:
            self._locks.discard(id)


@dataclass(frozen=True)
class MemoryLock:
    """A lock on one upload id inside a MemoryLocker."""

    locker: MemoryLocker
    id: str

    def lock(self) -> None:
        """Take the lock or raise FileLockedError if it is already held."""
        self.locker._acquire(self.id)

    def unlock(self) -> None:
        """Release the lock; releasing an unheld lock does nothing."""
        self.locker._release(self.id)

    def __enter__(self) -> "MemoryLock":
        self.lock()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unlock()