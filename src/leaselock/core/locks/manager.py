"""Lock manager implementing the lease acquisition protocol."""

from __future__ import annotations

import logging
import math
import os
import random
import threading
import time
import uuid
from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from leaselock.core.config import LockConfig, StoreConfig
from leaselock.core.constants import ENV_STORE_URL, MEMORY_STORE_URL
from leaselock.core.exceptions import (
    AcquireCancelledError,
    LockBusyError,
    LockNotFoundError,
    WaitTimeoutError,
)
from leaselock.core.locks.stores import (
    InsertStatus,
    LockRecord,
    LockStore,
    MemoryLockStore,
    SQLAlchemyLockStore,
)
from leaselock.core.logging import redact_url, with_log_context

Duration = float | int | timedelta


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_holder_token() -> str:
    return uuid.uuid4().hex


_MAX_DURATION_SECONDS = timedelta.max.total_seconds()


def _to_seconds(value: Duration, name: str) -> float:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if not math.isfinite(seconds) or seconds < 0 or seconds > _MAX_DURATION_SECONDS:
        raise ValueError(f"{name} must be a non-negative finite duration, got {value!r}")
    return seconds


def _lease_deadline(now: datetime, max_age_seconds: float) -> datetime:
    try:
        return now + timedelta(seconds=max_age_seconds)
    except OverflowError as e:
        raise ValueError(f"max_age of {max_age_seconds}s puts the lease deadline out of range") from e


def _wait_on_event(event: threading.Event, timeout: float) -> bool:
    return event.wait(timeout)


def create_lock_store(
    url: str | None = None,
    *,
    config: StoreConfig | None = None,
    logger: logging.Logger | None = None,
) -> LockStore:
    """Create lock store from explicit URL, store config or environment override."""
    log = logger or logging.getLogger(__name__)
    store_config = config or StoreConfig(url=os.environ.get(ENV_STORE_URL, MEMORY_STORE_URL))
    requested = (url or store_config.url).strip()

    if requested.lower() == MEMORY_STORE_URL:
        log.debug("Using in-process memory lock store")
        return MemoryLockStore()

    log.debug("Using SQLAlchemy lock store at %s (table %s)", redact_url(requested), store_config.table_name)
    return SQLAlchemyLockStore(
        requested,
        table_name=store_config.table_name,
        create_table=store_config.create_table,
        echo=store_config.echo,
    )


class AcquireState(Enum):
    """States of a single acquisition run."""

    ATTEMPTING = "attempting"
    SLEEPING = "sleeping"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


class _Acquisition:
    """Tracks state and attempt count for one acquire() call."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter):
        self.state = AcquireState.ATTEMPTING
        self.attempts = 0
        self._logger = logger

    def transition(self, new_state: AcquireState) -> None:
        old_state = self.state
        self.state = new_state
        if old_state != new_state:
            self._logger.debug(f"Acquire state: {old_state.value} -> {new_state.value} (attempts={self.attempts})")


class LockHandle:
    """Proof of a successful acquisition.

    Owned by the acquiring call site. ``release()`` deletes the record only if
    it still carries this handle's holder token, so a handle whose lease
    expired can never remove a newer holder's lock.
    """

    def __init__(
        self,
        store: LockStore,
        record: LockRecord,
        *,
        acquired_at: datetime,
        attempts: int = 1,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._record = record
        self.acquired_at = acquired_at
        self.attempts = attempts
        self.logger = logger or logging.getLogger(__name__)
        self._released = False

    @property
    def resource_id(self) -> Hashable:
        return self._record.resource_id

    @property
    def holder_token(self) -> str:
        return self._record.holder_token

    @property
    def deadline(self) -> datetime:
        return self._record.deadline

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release the lease.

        Raises:
            LockNotFoundError: No record matches this handle's resource and token
            StoreError: The store failed
        """
        if not self._store.delete_if_match(self.resource_id, self.holder_token):
            raise LockNotFoundError(self.resource_id, details="lease is no longer held by this handle")
        self._released = True
        self.logger.info("Released lock")

    def __enter__(self) -> LockHandle:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._released:
            return
        try:
            self.release()
        except LockNotFoundError:
            self.logger.warning("Lease on %r was lost before release", self.resource_id)

    def __repr__(self) -> str:
        return (
            f"LockHandle(resource_id={self.resource_id!r}, deadline={self.deadline.isoformat()}, "
            f"released={self._released})"
        )


class LockManager:
    """Single-key mutual exclusion with expiring leases over a shared store.

    All coordination happens through the store's atomic insert; the manager
    keeps no state shared between callers, so one instance may be used from
    many threads.

    Example:
        manager = LockManager(SQLAlchemyLockStore("postgresql://..."))

        with manager.lock("nightly-report", max_age=300, wait_timeout=5):
            run_report()
    """

    def __init__(
        self,
        store: LockStore | None = None,
        *,
        config: LockConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
        wait: Callable[[threading.Event, float], bool] | None = None,
        rng: random.Random | None = None,
        token_factory: Callable[[], str] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or LockConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)
        self._owns_store = store is None
        self.store = store if store is not None else create_lock_store(config=self.config.store, logger=self.logger)

        self._clock = clock or _utcnow
        self._monotonic = monotonic or time.monotonic
        self._sleep = sleep or time.sleep
        # Cancellable sleeps; returns True once the event is set
        self._wait = wait or _wait_on_event
        self._rng = rng or random.Random()
        self._token_factory = token_factory or _new_holder_token

    def _log_for(self, resource: Hashable) -> logging.Logger | logging.LoggerAdapter:
        return with_log_context(self.logger, resource=str(resource), store=self.store.name)

    def backoff_delay(self, granularity: float) -> float:
        """Return one jittered sleep in [granularity/2, granularity]."""
        half = granularity / 2
        return half + self._rng.uniform(0, half)

    def acquire(
        self,
        resource: Hashable,
        max_age: Duration | None = None,
        wait_timeout: Duration | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> LockHandle:
        """
        Acquire a lease on ``resource``, retrying while it is contended.

        Args:
            resource: Key of the protected resource
            max_age: Lease length in seconds or as timedelta (default: config)
            wait_timeout: Total time to keep retrying under contention; 0 tries once (default: config)
            cancel_event: Optional event that aborts the wait when set

        Returns:
            LockHandle for the acquired lease

        Raises:
            ValueError: A duration is negative, not finite, or too large for a lease deadline
            WaitTimeoutError: Still contended when the wait budget ran out
            AcquireCancelledError: cancel_event was set
            StoreError: The store failed (never retried)
        """
        max_age_seconds = _to_seconds(
            self.config.default_max_age_seconds if max_age is None else max_age, "max_age"
        )
        wait_seconds = _to_seconds(
            self.config.default_wait_timeout_seconds if wait_timeout is None else wait_timeout, "wait_timeout"
        )
        _lease_deadline(self._clock(), max_age_seconds)
        log = self._log_for(resource)

        removed = self.store.delete_expired(resource, self._clock())
        if removed:
            log.debug("Removed stale lock record before acquiring")

        wait_deadline = self._monotonic() + wait_seconds
        granularity = self.config.backoff.granularity_for(wait_seconds)
        run = _Acquisition(log)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                run.transition(AcquireState.CANCELLED)
                raise AcquireCancelledError(resource, run.attempts)

            run.transition(AcquireState.ATTEMPTING)
            run.attempts += 1
            now = self._clock()
            record = LockRecord(
                resource_id=resource,
                holder_token=self._token_factory(),
                deadline=_lease_deadline(now, max_age_seconds),
            )
            try:
                status = self.store.insert_unique(record, now)
            except Exception:
                run.transition(AcquireState.FAILED)
                raise

            if status is InsertStatus.INSERTED:
                run.transition(AcquireState.SUCCEEDED)
                log.info(f"Acquired lock until {record.deadline.isoformat()} after {run.attempts} attempt(s)")
                return LockHandle(self.store, record, acquired_at=now, attempts=run.attempts, logger=log)

            if self._monotonic() >= wait_deadline:
                run.transition(AcquireState.TIMED_OUT)
                log.info(f"Lock still busy after waiting {wait_seconds:.3f}s ({run.attempts} attempt(s))")
                raise WaitTimeoutError(resource, wait_seconds, run.attempts)

            delay = self.backoff_delay(granularity)
            run.transition(AcquireState.SLEEPING)
            log.debug(f"Lock busy; retrying in {delay:.3f}s")
            if cancel_event is not None:
                if self._wait(cancel_event, delay):
                    run.transition(AcquireState.CANCELLED)
                    raise AcquireCancelledError(resource, run.attempts)
            else:
                self._sleep(delay)

    @contextmanager
    def lock(
        self,
        resource: Hashable,
        max_age: Duration | None = None,
        wait_timeout: Duration | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[LockHandle]:
        """Acquire ``resource`` for the duration of a ``with`` block."""
        handle = self.acquire(resource, max_age, wait_timeout, cancel_event=cancel_event)
        with handle:
            yield handle

    def check(self, resource: Hashable) -> None:
        """Raise LockBusyError if a live lock exists for ``resource``.

        The answer is a racy snapshot; use acquire() to actually take the lock.
        """
        record = self.store.find_live(resource, self._clock())
        if record is not None:
            raise LockBusyError(resource, record.deadline)

    def is_locked(self, resource: Hashable) -> bool:
        return self.store.find_live(resource, self._clock()) is not None

    def break_lock(self, resource: Hashable) -> bool:
        """Forcibly remove the lock on ``resource`` regardless of holder.

        Returns:
            True if a record was removed, False if there was none
        """
        removed = self.store.delete(resource)
        if removed:
            self._log_for(resource).warning("Lock forcibly broken")
        return removed

    def read_info(self, resource: Hashable) -> dict | None:
        """Read the stored record for diagnostics, including an ``expired`` flag."""
        record = self.store.get(resource)
        if record is None:
            return None
        info = record.to_dict()
        now = self._clock()
        info["expired"] = record.is_expired(now)
        info["remaining_seconds"] = record.remaining(now).total_seconds()
        return info

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> LockManager:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()
