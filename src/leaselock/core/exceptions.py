"""Custom exceptions for leaselock.

Contention outcomes (busy, wait timeout, not found) are ordinary control-flow
signals for callers. Store failures are surfaced as ``StoreError`` and are
never retried by the lock manager.
"""

from __future__ import annotations

from collections.abc import Hashable
from datetime import datetime


class LeaseLockError(Exception):
    """Base exception for all leaselock errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(LeaseLockError):
    """Exception raised for invalid configuration values.

    Examples:
        - Negative backoff granularity
        - Granularity floor above its ceiling
        - Empty store URL or table name
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class LockBusyError(LeaseLockError):
    """Raised by ``check`` when a live lock exists for the resource.

    Attributes:
        resource_id: Resource that is locked
        deadline: When the current lease expires
    """

    def __init__(self, resource_id: Hashable, deadline: datetime | None = None):
        self.resource_id = resource_id
        self.deadline = deadline
        details = f"held until {deadline.isoformat()}" if deadline is not None else None
        super().__init__(f"Lock busy for resource {resource_id!r}", details)


class WaitTimeoutError(LeaseLockError):
    """Raised when acquisition could not succeed within the wait budget.

    Attributes:
        resource_id: Resource that stayed contended
        wait_timeout: Wait budget in seconds
        attempts: Number of insert attempts made
    """

    def __init__(self, resource_id: Hashable, wait_timeout: float, attempts: int = 0):
        self.resource_id = resource_id
        self.wait_timeout = wait_timeout
        self.attempts = attempts
        super().__init__(
            f"Timed out waiting for lock on resource {resource_id!r}",
            f"waited {wait_timeout:.3f}s over {attempts} attempt(s)",
        )


class AcquireCancelledError(LeaseLockError):
    """Raised when an external cancellation event stops acquisition."""

    def __init__(self, resource_id: Hashable, attempts: int = 0):
        self.resource_id = resource_id
        self.attempts = attempts
        super().__init__(f"Acquisition of lock on resource {resource_id!r} was cancelled", f"{attempts} attempt(s)")


class LockNotFoundError(LeaseLockError):
    """Raised when release finds no record matching resource and holder token.

    This happens after a prior release, after the lease expired and another
    holder took the resource, or after an administrative break.
    """

    def __init__(self, resource_id: Hashable, details: str | None = None):
        self.resource_id = resource_id
        super().__init__(f"No lock held for resource {resource_id!r}", details)


class StoreError(LeaseLockError):
    """Exception raised for lock store failures.

    Wraps driver and connectivity errors with the store operation that failed.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.operation = operation
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"during {self.operation}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)
