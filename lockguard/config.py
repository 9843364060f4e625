"""
Lock Guard Configuration
========================

Zero-config defaults with environment overrides.

Environment Variables:
    LOCKGUARD_RETRY_LIMIT:          Max acquisition attempts (default 1)
    LOCKGUARD_LEASE_SECONDS:        Lock TTL in seconds (default 30.0)
    LOCKGUARD_HEARTBEAT_INTERVAL:   Seconds between lease renewals (default 6.0)
    LOCKGUARD_BACKOFF_BASE:         Backoff base delay in seconds (default 0.02)
    LOCKGUARD_BACKOFF_CAP:          Backoff delay cap in seconds (default 0.1)
    LOCKGUARD_KEY_PREFIX:           Prefix applied to every lock key (default "")
    REDIS_URL:                      Full Redis URL, wins over host/port/db
    REDIS_HOST / REDIS_PORT:        Redis endpoint (default localhost:6379)
    REDIS_LOCK_DB:                  Redis database for locks (default 0)
    REDIS_PASSWORD:                 Redis password (default none)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from lockguard.errors import LockConfigError


def _env_float(key: str, default: float) -> float:
    """Get float from environment with default."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    """Get int from environment with default."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_RETRY_LIMIT = 1
DEFAULT_LEASE_SECONDS = 30.0
DEFAULT_HEARTBEAT_INTERVAL = 6.0
DEFAULT_BACKOFF_BASE = 0.02
DEFAULT_BACKOFF_CAP = 0.1

REDIS_HOST = "localhost"
REDIS_PORT = 6379
REDIS_LOCK_DB = 0


@dataclass(frozen=True)
class LockGuardConfig:
    """
    Settings applied to a LockGuard at construction, before any attempt.

    ``heartbeat_interval_seconds`` is deliberately independent of the lease;
    keep it well below ``lease_seconds`` or renewals will arrive too late.
    """
    # Acquisition
    retry_limit: int = DEFAULT_RETRY_LIMIT
    lease_seconds: float = DEFAULT_LEASE_SECONDS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE
    backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP

    # Renewal
    heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL
    heartbeat_shutdown_timeout_seconds: float = 1.0

    # Key override
    key_prefix: str = ""

    # Redis connection
    redis_url: Optional[str] = None
    redis_host: str = REDIS_HOST
    redis_port: int = REDIS_PORT
    redis_db: int = REDIS_LOCK_DB
    redis_password: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls, **overrides: Any) -> "LockGuardConfig":
        """Build a config from environment variables, then apply overrides."""
        config = cls(
            retry_limit=_env_int("LOCKGUARD_RETRY_LIMIT", DEFAULT_RETRY_LIMIT),
            lease_seconds=_env_float("LOCKGUARD_LEASE_SECONDS", DEFAULT_LEASE_SECONDS),
            backoff_base_seconds=_env_float("LOCKGUARD_BACKOFF_BASE", DEFAULT_BACKOFF_BASE),
            backoff_cap_seconds=_env_float("LOCKGUARD_BACKOFF_CAP", DEFAULT_BACKOFF_CAP),
            heartbeat_interval_seconds=_env_float(
                "LOCKGUARD_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL
            ),
            key_prefix=os.getenv("LOCKGUARD_KEY_PREFIX", ""),
            redis_url=os.getenv("REDIS_URL") or None,
            redis_host=os.getenv("REDIS_HOST", REDIS_HOST),
            redis_port=_env_int("REDIS_PORT", REDIS_PORT),
            redis_db=_env_int("REDIS_LOCK_DB", REDIS_LOCK_DB),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> "LockGuardConfig":
        """Return a copy with every non-None override applied."""
        changes = {name: value for name, value in overrides.items() if value is not None}
        if not changes:
            return self
        try:
            return replace(self, **changes)
        except TypeError as e:
            raise LockConfigError(f"unknown lock option: {e}") from e

    def validate(self) -> None:
        """Raise LockConfigError if any option is out of range."""
        if not isinstance(self.retry_limit, int) or self.retry_limit < 1:
            raise LockConfigError(f"retry_limit must be >= 1, got {self.retry_limit!r}")
        if self.lease_seconds <= 0:
            raise LockConfigError(f"lease_seconds must be > 0, got {self.lease_seconds!r}")
        if self.heartbeat_interval_seconds <= 0:
            raise LockConfigError(
                f"heartbeat_interval_seconds must be > 0, got {self.heartbeat_interval_seconds!r}"
            )
        if self.backoff_base_seconds < 0 or self.backoff_cap_seconds < 0:
            raise LockConfigError("backoff delays must be >= 0")

    def resolve_key(self, key: str) -> str:
        """Validate a caller key and apply the configured prefix."""
        if not isinstance(key, str) or not key:
            raise LockConfigError("key length is zero")
        return f"{self.key_prefix}{key}"

    def build_redis_url(self) -> str:
        """Redis URL for this config, preferring an explicit ``redis_url``."""
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"
