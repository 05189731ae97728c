"""Pytest configuration and fixtures for leaselock tests"""

from __future__ import annotations

import random
import threading
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from leaselock.core.locks.manager import LockManager
from leaselock.core.locks.stores import LockStore, MemoryLockStore, SQLAlchemyLockStore


class FakeClock:
    """Deterministic wall clock, monotonic clock and sleep sharing one timeline."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.elapsed

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        self.sleep(seconds)
        return event.is_set()

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds
        self.current += timedelta(seconds=seconds)


class MaxJitterRandom(random.Random):
    """Random source that always picks the top of the jitter range."""

    def uniform(self, a: float, b: float) -> float:
        return b


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> MemoryLockStore:
    return MemoryLockStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[SQLAlchemyLockStore]:
    store = SQLAlchemyLockStore(f"sqlite:///{tmp_path / 'locks.db'}")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[LockStore]:
    """Every lock store implementation, for contract and property tests."""
    if request.param == "memory":
        yield MemoryLockStore()
        return
    sql_store = SQLAlchemyLockStore(f"sqlite:///{tmp_path / 'locks.db'}")
    yield sql_store
    sql_store.close()


@pytest.fixture
def fake_manager_factory(fake_clock: FakeClock):
    """Build LockManagers on the fake timeline."""

    def _build(store: LockStore, **kwargs) -> LockManager:
        kwargs.setdefault("rng", random.Random(1234))
        return LockManager(
            store,
            clock=fake_clock.now,
            monotonic=fake_clock.monotonic,
            sleep=fake_clock.sleep,
            wait=fake_clock.wait,
            **kwargs,
        )

    return _build
