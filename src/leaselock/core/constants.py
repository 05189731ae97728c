"""Constants and default values for leaselock.

This module centralizes the backoff policy numbers, store defaults and
environment variable names used throughout the package.
"""

# ==================== BACKOFF POLICY ====================

# Retry granularity is wait_timeout * fraction, clamped to [floor, ceiling].
# Each retry sleeps granularity/2 plus up to granularity/2 of jitter.
DEFAULT_GRANULARITY_FRACTION: float = 0.1
DEFAULT_MIN_GRANULARITY_SECONDS: float = 0.05
DEFAULT_MAX_GRANULARITY_SECONDS: float = 0.2

# ==================== LEASE DEFAULTS ====================

DEFAULT_MAX_AGE_SECONDS: float = 60.0
DEFAULT_WAIT_TIMEOUT_SECONDS: float = 0.0  # Try once, no retry

# ==================== STORE DEFAULTS ====================

MEMORY_STORE_URL: str = "memory"
DEFAULT_STORE_URL: str = MEMORY_STORE_URL
DEFAULT_TABLE_NAME: str = "lock_records"
RESOURCE_ID_MAX_LENGTH: int = 255
HOLDER_TOKEN_MAX_LENGTH: int = 64

# ==================== LOGGING ====================

DEFAULT_LOG_LEVEL: str = "INFO"
DEFAULT_LOG_FORMAT: str = "text"
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ==================== ENVIRONMENT ====================

# Environment variable names read by LockConfig.from_env()
ENV_STORE_URL = "LEASELOCK_STORE_URL"
ENV_TABLE_NAME = "LEASELOCK_TABLE_NAME"
ENV_CREATE_TABLE = "LEASELOCK_CREATE_TABLE"
ENV_MAX_AGE = "LEASELOCK_MAX_AGE"
ENV_WAIT_TIMEOUT = "LEASELOCK_WAIT_TIMEOUT"
ENV_GRANULARITY_FRACTION = "LEASELOCK_GRANULARITY_FRACTION"
ENV_MIN_GRANULARITY = "LEASELOCK_MIN_GRANULARITY"
ENV_MAX_GRANULARITY = "LEASELOCK_MAX_GRANULARITY"
ENV_LOG_LEVEL = "LEASELOCK_LOG_LEVEL"
ENV_LOG_FORMAT = "LEASELOCK_LOG_FORMAT"

TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})
FALSY_VALUES = frozenset({"0", "false", "no", "off"})
