"""
Per-unit mutual exclusion, so that only one reconciliation of a given unit runs at a time.

This only serializes work within the current process.  Changes made to the unit by anything else
(an administrator running `systemctl`, another process) are not prevented.
"""

from contextlib import contextmanager
import logging
import threading
from typing import Dict, Iterator


LOG = logging.getLogger(__name__)


class UnitLockRegistry:
    """
    Table of locks keyed by unit name, created on first access and kept for the registry's
    lifetime.  Unit locks are plain non-reentrant locks.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def __contains__(self, name: str):
        with self._guard:
            return name in self._locks

    def lock_for(self, name: str) -> threading.Lock:
        """
        Return the lock belonging to the given unit, creating it if needed.  The registry's own
        guard is only held for the lookup.
        """
        with self._guard:
            try:
                return self._locks[name]
            except KeyError:
                lock = self._locks[name] = threading.Lock()
                return lock

    @contextmanager
    def locked(self, name: str) -> Iterator[None]:
        """
        Hold the given unit's lock for the duration of a block:

            with registry.locked("nginx.service"):
                ...
        """
        lock = self.lock_for(name)
        if lock.locked():
            LOG.debug("Waiting for lock on %s", name)
        with lock:
            yield
