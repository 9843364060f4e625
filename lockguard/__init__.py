"""
lockguard - distributed lock guard over Redis.

Runs a critical section while holding a lease-based Redis lock: SET NX
acquisition with jittered retries, heartbeat lease renewal, cancellation-aware
supervision and token-checked atomic release.
"""

from lockguard.backoff import (
    BackoffStrategy,
    EqualJitterBackoff,
    ExponentialBackoff,
    FullJitterBackoff,
)
from lockguard.config import LockGuardConfig
from lockguard.errors import (
    CriticalSectionFault,
    LockConfigError,
    LockGuardError,
    LockNotObtainedError,
    LockRunCancelledError,
    LockRunTimeoutError,
    LockStateError,
)
from lockguard.guard import LockContext, LockGuard, OutcomeKind, SectionOutcome, run_locked
from lockguard.heartbeat import LeaseHeartbeat
from lockguard.metrics import LockGuardMetrics
from lockguard.state import LockPhase, LockState
from lockguard.store import (
    RELEASE_SCRIPT,
    LockStore,
    RedisLockStore,
    close_lock_store,
    get_lock_store,
)
from lockguard.tokens import generate_token

__all__ = [
    # Main API
    "LockGuard",
    "LockContext",
    "run_locked",
    "LockGuardConfig",
    # Store
    "LockStore",
    "RedisLockStore",
    "RELEASE_SCRIPT",
    "get_lock_store",
    "close_lock_store",
    # Building blocks
    "LeaseHeartbeat",
    "LockState",
    "LockPhase",
    "LockGuardMetrics",
    "SectionOutcome",
    "OutcomeKind",
    "generate_token",
    "BackoffStrategy",
    "ExponentialBackoff",
    "FullJitterBackoff",
    "EqualJitterBackoff",
    # Errors
    "LockGuardError",
    "LockConfigError",
    "LockStateError",
    "LockNotObtainedError",
    "LockRunCancelledError",
    "LockRunTimeoutError",
    "CriticalSectionFault",
]

__version__ = "1.0.0"
