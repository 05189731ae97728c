"""Real-time behavior of the lock protocol against every store.

These tests sleep on the wall clock, mirroring how independent processes
contend for the same resource.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from leaselock.core.exceptions import LockBusyError, LockNotFoundError, WaitTimeoutError
from leaselock.core.locks.manager import LockManager
from leaselock.core.locks.stores import LockStore, SQLAlchemyLockStore


def test_timeout_arithmetic_against_held_resource(store: LockStore) -> None:
    holder = LockManager(store)
    contender = LockManager(store)
    holder.acquire("testID", max_age=2.0, wait_timeout=0.1)

    start = time.monotonic()
    with pytest.raises(WaitTimeoutError):
        contender.acquire("testID", max_age=1.0, wait_timeout=0.2)
    elapsed = time.monotonic() - start

    # One granularity of slack (0.05s) plus scheduling noise.
    assert 0.2 <= elapsed < 0.6


def test_expiry_lets_waiting_contender_in(store: LockStore) -> None:
    LockManager(store).acquire("testID", max_age=0.3, wait_timeout=0)

    start = time.monotonic()
    handle = LockManager(store).acquire("testID", max_age=1.0, wait_timeout=2.0)
    elapsed = time.monotonic() - start

    assert elapsed >= 0.2
    assert handle.released is False
    handle.release()


def test_check_correctness_over_lease_lifetime(store: LockStore) -> None:
    manager = LockManager(store)
    manager.acquire("testID", max_age=1.0, wait_timeout=0.1)

    with pytest.raises(LockBusyError):
        manager.check("testID")

    time.sleep(1.1)
    assert manager.check("testID") is None


def test_expired_holder_cannot_release_new_holder(store: LockStore) -> None:
    first = LockManager(store).acquire("testID", max_age=0.2, wait_timeout=0)
    time.sleep(0.3)
    second = LockManager(store).acquire("testID", max_age=2.0, wait_timeout=0.1)

    with pytest.raises(LockNotFoundError):
        first.release()

    with pytest.raises(LockBusyError) as exc_info:
        LockManager(store).check("testID")
    assert exc_info.value.deadline == second.deadline
    second.release()


def test_break_then_acquire_immediately(store: LockStore) -> None:
    manager = LockManager(store)
    assert manager.break_lock("testID") is False

    manager.acquire("testID", max_age=60, wait_timeout=0)
    assert manager.break_lock("testID") is True
    assert manager.check("testID") is None

    start = time.monotonic()
    handle = manager.acquire("testID", max_age=60, wait_timeout=0)
    assert time.monotonic() - start < 0.5
    assert handle.attempts == 1


def test_wait_timeout_then_expiry_then_key_protection(store: LockStore) -> None:
    manager = LockManager(store)
    first = manager.acquire("testID", max_age=1.0, wait_timeout=0.1)

    with pytest.raises(LockBusyError):
        manager.check("testID")
    with pytest.raises(WaitTimeoutError):
        manager.acquire("testID", max_age=1.0, wait_timeout=0.2)

    time.sleep(1.0)
    second = manager.acquire("testID", max_age=2.0, wait_timeout=0.1)

    with pytest.raises(LockNotFoundError):
        first.release()
    with pytest.raises(LockBusyError):
        manager.check("testID")
    second.release()


def _run_contenders(store: LockStore, workers: int, rounds: int) -> tuple[int, int]:
    active = 0
    max_active = 0
    completed = 0
    counter_lock = threading.Lock()
    errors: list[BaseException] = []

    def worker() -> None:
        nonlocal active, max_active, completed
        manager = LockManager(store)
        try:
            for _ in range(rounds):
                with manager.lock("shared", max_age=10, wait_timeout=10):
                    with counter_lock:
                        active += 1
                        max_active = max(max_active, active)
                    time.sleep(0.005)
                    with counter_lock:
                        active -= 1
                        completed += 1
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    return max_active, completed


def test_mutual_exclusion_across_threads(store: LockStore) -> None:
    max_active, completed = _run_contenders(store, workers=4, rounds=5)

    assert max_active == 1
    assert completed == 20


def test_managers_on_separate_engines_share_the_lock(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'shared.db'}"
    store_a = SQLAlchemyLockStore(url)
    store_b = SQLAlchemyLockStore(url)
    try:
        handle = LockManager(store_a).acquire("report", max_age=5, wait_timeout=0)
        assert LockManager(store_b).is_locked("report") is True
        with pytest.raises(WaitTimeoutError):
            LockManager(store_b).acquire("report", max_age=5, wait_timeout=0.1)

        handle.release()
        LockManager(store_b).acquire("report", max_age=5, wait_timeout=0).release()
    finally:
        store_a.close()
        store_b.close()
