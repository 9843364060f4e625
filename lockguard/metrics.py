"""Counters for lock guard activity."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass
class LockGuardMetrics:
    """Metrics for one LockGuard, accumulated across its runs."""
    attempts: int = 0
    acquisitions: int = 0
    not_obtained: int = 0
    renewals: int = 0
    renewal_failures: int = 0
    releases: int = 0
    release_misses: int = 0
    release_errors: int = 0
    faults: int = 0
    cancellations: int = 0
    total_hold_time_ms: float = 0.0
    max_hold_time_ms: float = 0.0

    def record_release(self, hold_time_ms: float) -> None:
        self.total_hold_time_ms += hold_time_ms
        if hold_time_ms > self.max_hold_time_ms:
            self.max_hold_time_ms = hold_time_ms

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)
