"""
Per-resource mutual exclusion for action execution.
"""

import threading
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from cloud_cost_advisor.core.errors import ResourceBusy


class Lease:
    """A held resource lock.

    Released when the ``hold`` block exits, unless ``release_after`` hands
    it to a provider call that is still running.
    """

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        self.pending: Optional[Future] = None

    def release_after(self, future: Future) -> None:
        """Keep the resource locked until ``future`` finishes."""
        self.pending = future


class ResourceLocks:
    """One lock per resource id, created on demand and dropped when idle.

    Args:
        wait_timeout: Seconds to wait for a busy resource. None waits
            indefinitely; 0 rejects immediately with ResourceBusy.
    """

    def __init__(self, wait_timeout: Optional[float] = 0.0):
        self.wait_timeout = wait_timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, resource_id: str) -> Iterator[Lease]:
        """Hold the lock for a resource for the duration of the block.

        Raises:
            ResourceBusy: If the lock isn't acquired within wait_timeout
        """
        lock = self._checkout(resource_id)
        acquired = False
        try:
            acquired = self._acquire(lock)
        finally:
            if not acquired:
                self._checkin(resource_id)
        if not acquired:
            raise ResourceBusy(resource_id)

        lease = Lease(resource_id)
        try:
            yield lease
        finally:
            if lease.pending is None:
                self._release(resource_id, lock)
            else:
                lease.pending.add_done_callback(
                    lambda _future: self._release(resource_id, lock)
                )

    def is_locked(self, resource_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(resource_id)
            return lock is not None and lock.locked()

    def _acquire(self, lock: threading.Lock) -> bool:
        if self.wait_timeout is None:
            return lock.acquire()
        if self.wait_timeout <= 0:
            return lock.acquire(blocking=False)
        return lock.acquire(timeout=self.wait_timeout)

    def _release(self, resource_id: str, lock: threading.Lock) -> None:
        lock.release()
        self._checkin(resource_id)

    def _checkout(self, resource_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(resource_id, threading.Lock())
            self._users[resource_id] = self._users.get(resource_id, 0) + 1
            return lock

    def _checkin(self, resource_id: str) -> None:
        with self._guard:
            self._users[resource_id] -= 1
            if not self._users[resource_id]:
                del self._users[resource_id]
                del self._locks[resource_id]
