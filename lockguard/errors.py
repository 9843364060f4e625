"""
Lock Guard Errors
=================

Exception hierarchy for the distributed lock guard.

Every error raised by ``LockGuard.run`` on its own behalf derives from
``LockGuardError``. Errors raised *by* the critical section are passed through
unchanged and are not part of this hierarchy.
"""

from __future__ import annotations

from typing import Optional


class LockGuardError(Exception):
    """Base exception for the lock guard."""


class LockConfigError(LockGuardError, ValueError):
    """Raised at construction when the key or an option is invalid."""


class LockStateError(LockGuardError):
    """Raised on an illegal lock phase transition."""


class LockNotObtainedError(LockGuardError):
    """Raised when every acquisition attempt failed."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"key: {key}, err: lock not obtained")


class LockRunCancelledError(LockGuardError):
    """Raised when the caller's cancel event fired before the critical section finished."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"key: {key}, err: run cancelled")


class LockRunTimeoutError(LockGuardError, TimeoutError):
    """Raised when the caller's deadline passed before the critical section finished."""

    def __init__(self, key: str, timeout: Optional[float]):
        self.key = key
        self.timeout = timeout
        super().__init__(f"key: {key}, err: deadline exceeded after {timeout}s")


class CriticalSectionFault(LockGuardError):
    """
    Raised when the critical section terminated abnormally with something
    that is not an ``Exception``.

    The original value is kept on ``fault`` and chained as ``__cause__``.
    """

    def __init__(self, key: str, fault: BaseException):
        self.key = key
        self.fault = fault
        super().__init__(f"key: {key}, critical section fault: {fault!r}")
