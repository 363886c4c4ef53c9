# app/utils/locks.py
"""
Per-key mutual exclusion for request workers in one process.

Each key (a credential id or live session id) gets its own lock, so traffic
on unrelated keys never serializes. Locks are reference counted and dropped
once nobody holds or waits on them.
"""

import logging
from threading import Lock
from typing import Dict

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = Lock()
        self.refs = 0


class KeyedLock:
    def __init__(self, timeout_seconds: float = 30.0):
        self._timeout = timeout_seconds
        self._entries: Dict[str, _Entry] = {}
        self._guard = Lock()

    def acquire(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1

        if not entry.lock.acquire(timeout=self._timeout):
            self._drop_ref(key, entry)
            raise TimeoutError(f"Timed out waiting for lock on {key}")

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
        if entry is None:
            logger.warning(f"Release of unknown lock key {key}")
            return
        entry.lock.release()
        self._drop_ref(key, entry)

    def _drop_ref(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
