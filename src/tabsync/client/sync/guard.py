"""Single-flight guard: at most one sync pass per device at a time."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from tabsync.client.sync.types import ConcurrentSyncError

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """Per-device non-blocking locks.

    Owned by the caller and shareable between coordinators. A second
    acquisition for a device that is already syncing fails immediately.

    Usage:
        guard = SingleFlightGuard()
        with guard.hold(device_id):
            ...  # the sync pass
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, device_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(device_id)
            if lock is None:
                lock = self._locks[device_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, device_id: str) -> Iterator[None]:
        """Hold the device's slot for the duration of the block.

        Raises:
            ConcurrentSyncError: A pass is already running for device_id
        """
        lock = self._lock_for(device_id)
        if not lock.acquire(blocking=False):
            logger.warning("Sync already in progress for device %s", device_id)
            raise ConcurrentSyncError(device_id)
        try:
            yield
        finally:
            lock.release()

    def is_running(self, device_id: str) -> bool:
        """Check if a pass currently holds the device's slot."""
        return self._lock_for(device_id).locked()
