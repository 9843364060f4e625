"""
Lock State
==========

Per-run holder of key, token, lease and phase.

A LockState is created by ``LockGuard.run`` for exactly one invocation and is
never handed to another caller. Phases:

    IDLE -> ACQUIRING -> FAILED                      (retries exhausted)
                      -> HELD -> RUNNING -> RELEASING -> RELEASED
                         HELD ------------> RELEASING  (section never started)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from lockguard.errors import LockStateError


class LockPhase(Enum):
    """Lifecycle phases of one run."""
    IDLE = "idle"
    ACQUIRING = "acquiring"
    FAILED = "failed"
    HELD = "held"
    RUNNING = "running"
    RELEASING = "releasing"
    RELEASED = "released"


_TRANSITIONS: Dict[LockPhase, FrozenSet[LockPhase]] = {
    LockPhase.IDLE: frozenset({LockPhase.ACQUIRING}),
    LockPhase.ACQUIRING: frozenset({LockPhase.HELD, LockPhase.FAILED}),
    LockPhase.HELD: frozenset({LockPhase.RUNNING, LockPhase.RELEASING}),
    LockPhase.RUNNING: frozenset({LockPhase.RELEASING}),
    LockPhase.RELEASING: frozenset({LockPhase.RELEASED}),
    LockPhase.FAILED: frozenset(),
    LockPhase.RELEASED: frozenset(),
}


@dataclass
class LockState:
    key: str
    lease: float
    retry_limit: int
    token: Optional[str] = None
    held: bool = False
    phase: LockPhase = LockPhase.IDLE
    attempts: int = 0
    acquired_at: Optional[float] = None

    def transition(self, to: LockPhase) -> None:
        """Move to ``to`` or raise LockStateError if the state machine forbids it."""
        if to not in _TRANSITIONS[self.phase]:
            raise LockStateError(
                f"illegal lock transition {self.phase.value} -> {to.value} (key: {self.key})"
            )
        self.phase = to

    def begin_attempt(self, token: Optional[str] = None) -> None:
        """Discard the previous attempt's token and held flag before trying again."""
        if self.phase is LockPhase.IDLE:
            self.transition(LockPhase.ACQUIRING)
        elif self.phase is not LockPhase.ACQUIRING:
            raise LockStateError(f"cannot start an attempt while {self.phase.value} (key: {self.key})")
        self.held = False
        self.token = token
        self.attempts += 1

    def mark_held(self, now: float) -> None:
        """Record a store-confirmed conditional write."""
        if self.token is None:
            raise LockStateError(f"cannot hold a lock without a token (key: {self.key})")
        self.transition(LockPhase.HELD)
        self.held = True
        self.acquired_at = now

    def mark_released(self) -> None:
        self.held = False
        self.transition(LockPhase.RELEASED)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (LockPhase.FAILED, LockPhase.RELEASED)
