"""Core module - Foundation components of leaselock.

This module provides the basic building blocks used throughout the package:
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
- Logging helpers
"""

from leaselock.core.config import (
    BackoffConfig,
    LockConfig,
    LogConfig,
    StoreConfig,
)
from leaselock.core.exceptions import (
    AcquireCancelledError,
    ConfigurationError,
    LeaseLockError,
    LockBusyError,
    LockNotFoundError,
    StoreError,
    WaitTimeoutError,
)

__all__ = [
    "AcquireCancelledError",
    "BackoffConfig",
    "ConfigurationError",
    "LeaseLockError",
    "LockBusyError",
    "LockConfig",
    "LockNotFoundError",
    "LogConfig",
    "StoreConfig",
    "StoreError",
    "WaitTimeoutError",
]
