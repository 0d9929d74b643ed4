from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ..models.sync_log import SyncDirection

"""Cross-run coordination: one run at a time per (sheet_id, direction).

Runs on other sheets, or in the opposite direction, are not blocked.
"""

__all__ = [
    "RunBusyError",
    "RunLockRegistry",
]


class RunBusyError(Exception):
    pass


class RunLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, SyncDirection], threading.Lock] = {}

    def lock_for(self, sheet_id: str, direction: SyncDirection) -> threading.Lock:
        key = (sheet_id, SyncDirection(direction))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(
        self, sheet_id: str, direction: SyncDirection, timeout: float | None = None
    ) -> Iterator[None]:
        """Block until the (sheet_id, direction) slot is free.

        Raises:
            RunBusyError: the slot did not free up within `timeout` seconds
        """
        lock = self.lock_for(sheet_id, direction)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise RunBusyError(f"sync already running: sheet={sheet_id} direction={SyncDirection(direction).value}")
        try:
            yield
        finally:
            lock.release()

    def is_running(self, sheet_id: str, direction: SyncDirection) -> bool:
        return self.lock_for(sheet_id, direction).locked()
