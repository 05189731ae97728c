"""
leaselock - Expiring mutual-exclusion leases over a shared database

Processes that share no memory coordinate through a store whose uniqueness
constraint admits one lock record per resource. Leases expire on their own,
so a crashed holder cannot wedge a resource forever.
"""

from leaselock.core import (
    AcquireCancelledError,
    BackoffConfig,
    ConfigurationError,
    LeaseLockError,
    LockBusyError,
    LockConfig,
    LockNotFoundError,
    LogConfig,
    StoreConfig,
    StoreError,
    WaitTimeoutError,
)
from leaselock.core.locks import (
    AcquireState,
    InsertStatus,
    LockHandle,
    LockManager,
    LockRecord,
    LockStore,
    MemoryLockStore,
    SQLAlchemyLockStore,
    create_lock_store,
)
from leaselock.core.logging import setup_logging

__version__ = "1.0.0"

__all__ = [
    "AcquireCancelledError",
    "AcquireState",
    "BackoffConfig",
    "ConfigurationError",
    "InsertStatus",
    "LeaseLockError",
    "LockBusyError",
    "LockConfig",
    "LockHandle",
    "LockManager",
    "LockNotFoundError",
    "LockRecord",
    "LockStore",
    "LogConfig",
    "MemoryLockStore",
    "SQLAlchemyLockStore",
    "StoreConfig",
    "StoreError",
    "WaitTimeoutError",
    "__version__",
    "create_lock_store",
    "setup_logging",
]
