"""
Checksum cache shared by concurrent reconcile tasks (e.g. the encryption
configuration workflow). The lock is owned by the cache and only held for
the dictionary access itself, never across API calls.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChecksumCache:
    def __init__(self):
        self._lock = _ReadWriteLock()
        self._checksums: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock.read():
            return self._checksums.get(key)

    def set(self, key: str, checksum: str) -> Optional[str]:
        """Store a checksum and return the previous one."""
        with self._lock.write():
            previous = self._checksums.get(key)
            self._checksums[key] = checksum
            return previous

    def delete(self, key: str) -> None:
        with self._lock.write():
            self._checksums.pop(key, None)
