"""Configuration dataclasses for leaselock.

These dataclasses centralize the tunable parts of the lock protocol for type
safety and easy testing. They can be created directly in code or loaded from
``LEASELOCK_*`` environment variables (and a ``.env`` file when present).
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from leaselock.core.constants import (
    DEFAULT_GRANULARITY_FRACTION,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_AGE_SECONDS,
    DEFAULT_MAX_GRANULARITY_SECONDS,
    DEFAULT_MIN_GRANULARITY_SECONDS,
    DEFAULT_STORE_URL,
    DEFAULT_TABLE_NAME,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
    ENV_CREATE_TABLE,
    ENV_GRANULARITY_FRACTION,
    ENV_LOG_FORMAT,
    ENV_LOG_LEVEL,
    ENV_MAX_AGE,
    ENV_MAX_GRANULARITY,
    ENV_MIN_GRANULARITY,
    ENV_STORE_URL,
    ENV_TABLE_NAME,
    ENV_WAIT_TIMEOUT,
    FALSY_VALUES,
    TRUTHY_VALUES,
)
from leaselock.core.exceptions import ConfigurationError


@dataclass
class BackoffConfig:
    """Configuration for the acquisition retry cadence.

    Attributes:
        granularity_fraction: Share of the wait timeout used as retry granularity (default: 0.1)
        min_granularity_seconds: Lower clamp for the granularity (default: 0.05)
        max_granularity_seconds: Upper clamp for the granularity (default: 0.2)
    """

    granularity_fraction: float = DEFAULT_GRANULARITY_FRACTION
    min_granularity_seconds: float = DEFAULT_MIN_GRANULARITY_SECONDS
    max_granularity_seconds: float = DEFAULT_MAX_GRANULARITY_SECONDS

    def granularity_for(self, wait_timeout: float) -> float:
        """Return the clamped retry granularity for a wait budget in seconds."""
        raw = wait_timeout * self.granularity_fraction
        return min(self.max_granularity_seconds, max(self.min_granularity_seconds, raw))

    def validate(self) -> None:
        if self.granularity_fraction <= 0:
            raise ConfigurationError(
                "Granularity fraction must be positive",
                field="granularity_fraction",
                details=str(self.granularity_fraction),
            )
        if self.min_granularity_seconds <= 0:
            raise ConfigurationError(
                "Minimum granularity must be positive",
                field="min_granularity_seconds",
                details=str(self.min_granularity_seconds),
            )
        if self.max_granularity_seconds < self.min_granularity_seconds:
            raise ConfigurationError(
                "Maximum granularity must not be below the minimum",
                field="max_granularity_seconds",
                details=f"{self.max_granularity_seconds} < {self.min_granularity_seconds}",
            )


@dataclass
class StoreConfig:
    """Configuration for the lock record store.

    Attributes:
        url: "memory" or a SQLAlchemy database URL (default: "memory")
        table_name: Table holding lock records for SQL stores (default: "lock_records")
        create_table: Create the table on startup if missing (default: True)
        echo: Echo SQL statements through SQLAlchemy logging (default: False)
    """

    url: str = DEFAULT_STORE_URL
    table_name: str = DEFAULT_TABLE_NAME
    create_table: bool = True
    echo: bool = False

    def validate(self) -> None:
        if not self.url or not self.url.strip():
            raise ConfigurationError("Store URL must not be empty", field="url")
        if not self.table_name or not self.table_name.strip():
            raise ConfigurationError("Table name must not be empty", field="table_name")


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
    """

    level: str = DEFAULT_LOG_LEVEL
    format: str = DEFAULT_LOG_FORMAT


@dataclass
class LockConfig:
    """Master configuration for lock managers.

    Attributes:
        backoff: Retry cadence configuration
        store: Store configuration
        log: Logging configuration
        default_max_age_seconds: Lease length used when acquire() gets none
        default_wait_timeout_seconds: Wait budget used when acquire() gets none
    """

    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log: LogConfig = field(default_factory=LogConfig)
    default_max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS
    default_wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS

    def validate(self) -> None:
        """Validate all nested sections, raising ConfigurationError on the first problem."""
        self.backoff.validate()
        self.store.validate()
        if self.default_max_age_seconds < 0:
            raise ConfigurationError(
                "Default max age must not be negative",
                field="default_max_age_seconds",
                details=str(self.default_max_age_seconds),
            )
        if self.default_wait_timeout_seconds < 0:
            raise ConfigurationError(
                "Default wait timeout must not be negative",
                field="default_wait_timeout_seconds",
                details=str(self.default_wait_timeout_seconds),
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "backoff": {
                "granularity_fraction": self.backoff.granularity_fraction,
                "min_granularity_seconds": self.backoff.min_granularity_seconds,
                "max_granularity_seconds": self.backoff.max_granularity_seconds,
            },
            "store": {
                "url": self.store.url,
                "table_name": self.store.table_name,
                "create_table": self.store.create_table,
                "echo": self.store.echo,
            },
            "log": {"level": self.log.level, "format": self.log.format},
            "default_max_age_seconds": self.default_max_age_seconds,
            "default_wait_timeout_seconds": self.default_wait_timeout_seconds,
        }

    @classmethod
    def from_env(cls, *, load_dotenv_file: bool = True, logger: logging.Logger | None = None) -> LockConfig:
        """Create configuration from LEASELOCK_* environment variables.

        Invalid values are logged and ignored so the default stays in effect.
        """
        log = logger or logging.getLogger(__name__)
        if load_dotenv_file:
            _bootstrap_dotenv(log)

        config = cls()
        config.store.url = os.environ.get(ENV_STORE_URL, config.store.url).strip() or config.store.url
        config.store.table_name = os.environ.get(ENV_TABLE_NAME, config.store.table_name).strip() or config.store.table_name
        config.store.create_table = _env_bool(ENV_CREATE_TABLE, config.store.create_table, log)

        config.default_max_age_seconds = _env_non_negative(ENV_MAX_AGE, config.default_max_age_seconds, log)
        config.default_wait_timeout_seconds = _env_non_negative(
            ENV_WAIT_TIMEOUT, config.default_wait_timeout_seconds, log
        )

        backoff = config.backoff
        fraction = _parse_env_numeric(os.environ.get(ENV_GRANULARITY_FRACTION), float)
        if fraction is not None and fraction > 0:
            backoff.granularity_fraction = fraction
        elif ENV_GRANULARITY_FRACTION in os.environ:
            _warn_invalid(log, ENV_GRANULARITY_FRACTION, backoff.granularity_fraction)
        backoff.min_granularity_seconds = _env_positive(ENV_MIN_GRANULARITY, backoff.min_granularity_seconds, log)
        backoff.max_granularity_seconds = _env_positive(ENV_MAX_GRANULARITY, backoff.max_granularity_seconds, log)

        # Guard against an inverted clamp window.
        if backoff.max_granularity_seconds < backoff.min_granularity_seconds:
            log.warning(
                "Ignoring invalid granularity window (max=%s < min=%s); using max=%s",
                backoff.max_granularity_seconds,
                backoff.min_granularity_seconds,
                backoff.min_granularity_seconds,
            )
            backoff.max_granularity_seconds = backoff.min_granularity_seconds

        config.log.level = os.environ.get(ENV_LOG_LEVEL, config.log.level).strip().upper() or config.log.level
        config.log.format = os.environ.get(ENV_LOG_FORMAT, config.log.format).strip().lower() or config.log.format
        return config


def _bootstrap_dotenv(logger: logging.Logger) -> None:
    """Load .env variables without overriding the real environment."""
    from dotenv import find_dotenv, load_dotenv

    try:
        if load_dotenv(find_dotenv(usecwd=True), override=False):
            logger.debug("Loaded environment from .env file")
        else:
            logger.debug(".env file not found")
    except OSError as e:
        logger.debug(f"Failed to load .env via python-dotenv: {e}")


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _warn_invalid(logger: logging.Logger, name: str, default: object) -> None:
    logger.warning(f"Ignoring invalid {name}={os.environ.get(name)!r}; using default {default}")


def _env_non_negative(name: str, default: float, logger: logging.Logger) -> float:
    parsed = _parse_env_numeric(os.environ.get(name), float)
    if parsed is not None and parsed >= 0:
        return parsed
    if name in os.environ:
        _warn_invalid(logger, name, default)
    return default


def _env_positive(name: str, default: float, logger: logging.Logger) -> float:
    parsed = _parse_env_numeric(os.environ.get(name), float)
    if parsed is not None and parsed > 0:
        return parsed
    if name in os.environ:
        _warn_invalid(logger, name, default)
    return default


def _env_bool(name: str, default: bool, logger: logging.Logger) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in TRUTHY_VALUES:
        return True
    if normalized in FALSY_VALUES:
        return False
    _warn_invalid(logger, name, default)
    return default
