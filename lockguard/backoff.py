"""
Retry Backoff Strategies
========================

Pure functions of attempt index to delay (seconds). Attempts are 0-based:
``delay(0)`` is the pause after the first failed attempt.

Strategies:
    ExponentialBackoff  - min(cap, base * 2**attempt), no randomness
    FullJitterBackoff   - uniform in [0, min(cap, base * 2**attempt))
    EqualJitterBackoff  - half the exponential delay plus uniform jitter over the other half

Example:
    backoff = FullJitterBackoff(base=0.02, cap=0.1)
    await asyncio.sleep(backoff.delay(attempt))
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol


class BackoffStrategy(Protocol):
    def delay(self, attempt: int) -> float:
        ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """Capped exponential delay."""
    base: float = 0.02
    cap: float = 0.1

    def ceiling(self, attempt: int) -> float:
        """Upper bound of the delay for ``attempt``."""
        if attempt < 0:
            attempt = 0
        # Avoid float overflow on absurd attempt counts
        if attempt >= 64:
            attempt = 63
        return min(self.cap, self.base * (2 ** attempt))

    def delay(self, attempt: int) -> float:
        return self.ceiling(attempt)


@dataclass(frozen=True)
class FullJitterBackoff(ExponentialBackoff):
    """Delay sampled uniformly between zero and the capped exponential bound."""
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        ceiling = self.ceiling(attempt)
        if ceiling <= 0:
            return 0.0
        value = self.rng.uniform(0, ceiling)
        # uniform() may return the upper bound; keep the interval half-open
        return value if value < ceiling else 0.0


@dataclass(frozen=True)
class EqualJitterBackoff(ExponentialBackoff):
    """Half fixed, half jittered: uniform in [ceiling / 2, ceiling]."""
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        half = self.ceiling(attempt) / 2
        return half + self.rng.uniform(0, half)
