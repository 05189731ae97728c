"""Locking subsystem for cross-process coordination.

This package centralizes the lease acquisition protocol behind a store
abstraction so callers get one stable API regardless of the database that
enforces uniqueness.
"""

from leaselock.core.locks.manager import (
    AcquireState,
    LockHandle,
    LockManager,
    create_lock_store,
)
from leaselock.core.locks.stores import (
    InsertStatus,
    LockRecord,
    LockStore,
    MemoryLockStore,
    SQLAlchemyLockStore,
)

__all__ = [
    "AcquireState",
    "InsertStatus",
    "LockHandle",
    "LockManager",
    "LockRecord",
    "LockStore",
    "MemoryLockStore",
    "SQLAlchemyLockStore",
    "create_lock_store",
]
