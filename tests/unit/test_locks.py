from __future__ import annotations

import threading
import time

import pytest

from interior_sync.models.sync_log import SyncDirection
from interior_sync.services.locks import RunBusyError, RunLockRegistry


def test_hold_marks_slot_running():
    reg = RunLockRegistry()
    with reg.hold("demo", SyncDirection.PULL):
        assert reg.is_running("demo", SyncDirection.PULL)
        assert not reg.is_running("demo", SyncDirection.PUSH)
        assert not reg.is_running("other", SyncDirection.PULL)
    assert not reg.is_running("demo", SyncDirection.PULL)


def test_same_slot_times_out():
    reg = RunLockRegistry()
    with reg.hold("demo", "pull"):
        with pytest.raises(RunBusyError, match="sheet=demo direction=pull"):
            with reg.hold("demo", SyncDirection.PULL, timeout=0.01):
                pass


def test_other_direction_not_blocked():
    reg = RunLockRegistry()
    with reg.hold("demo", SyncDirection.PULL):
        with reg.hold("demo", SyncDirection.PUSH, timeout=0.01):
            pass


def test_runs_on_same_slot_are_serialized():
    reg = RunLockRegistry()
    active = 0
    peak = 0
    guard = threading.Lock()

    def run():
        nonlocal active, peak
        with reg.hold("demo", SyncDirection.PUSH):
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with guard:
                active -= 1

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert peak == 1
