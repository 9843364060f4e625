"""
Lock Guard
==========

Runs a critical section under a Redis-arbitrated distributed lock.

Features:
- SET NX PX acquisition with a fresh random token per attempt
- Bounded retries with full-jitter exponential backoff (20ms base, 100ms cap)
- Lease renewal heartbeat while the critical section runs
- Critical section raced against caller cancellation (event or deadline)
- Faults inside the critical section reported, never crashing the supervisor
- Token-checked atomic release (Lua compare-and-delete), always attempted

Example Usage:
    ```python
    store = RedisLockStore.from_url("redis://localhost:6379/0")
    guard = LockGuard(store, "reports:daily", retry_limit=3, lease=10.0)

    async def build_report(ctx: LockContext) -> int:
        ...
        return rows_written

    try:
        rows = await guard.run(build_report, timeout=60.0)
    except LockNotObtainedError:
        logger.info("Another worker is building the report")
    ```

Guarantees are best-effort. If the store becomes unreachable, or a lease
expires while the critical section is still running, another holder can
acquire the key. Lease-based locking cannot close that window.

Lifecycle per run:

    IDLE -> ACQUIRING -> FAILED                              (LockNotObtainedError)
                      -> HELD -> RUNNING -> RELEASING -> RELEASED

A LockGuard holds configuration only. Every ``run`` call builds its own
LockState, so concurrent runs on one guard contend through the store exactly
like runs on separate guards.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Union

from lockguard.backoff import BackoffStrategy, FullJitterBackoff
from lockguard.config import LockGuardConfig
from lockguard.errors import (
    CriticalSectionFault,
    LockNotObtainedError,
    LockRunCancelledError,
    LockRunTimeoutError,
)
from lockguard.heartbeat import LeaseHeartbeat, RenewalFailureHook
from lockguard.metrics import LockGuardMetrics
from lockguard.state import LockPhase, LockState
from lockguard.store import LockStore
from lockguard.tokens import generate_token

logger = logging.getLogger(__name__)

Handler = Callable[["LockContext"], Union[Awaitable[Any], Any]]


# =============================================================================
# Run Context & Outcome
# =============================================================================

@dataclass(frozen=True)
class LockContext:
    """What the critical section sees of the run that holds the lock."""
    key: str
    token: str
    lease: float
    cancel_event: Optional[asyncio.Event] = None
    deadline: Optional[float] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the caller's deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


class OutcomeKind(Enum):
    OK = "ok"
    ERROR = "error"
    FAULT = "fault"


@dataclass(frozen=True)
class SectionOutcome:
    """Result of the critical section, computed inside its task."""
    kind: OutcomeKind
    value: Any = None
    error: Optional[BaseException] = None

    def unwrap(self, key: str) -> Any:
        if self.kind is OutcomeKind.OK:
            return self.value
        if self.kind is OutcomeKind.ERROR:
            raise self.error
        raise CriticalSectionFault(key, self.error) from self.error


async def _run_section(handler: Handler, ctx: LockContext) -> SectionOutcome:
    try:
        if inspect.iscoroutinefunction(handler):
            value = await handler(ctx)
        else:
            value = await asyncio.to_thread(handler, ctx)
            if inspect.isawaitable(value):
                value = await value
    except asyncio.CancelledError:
        raise
    except Exception as e:
        return SectionOutcome(OutcomeKind.ERROR, error=e)
    except BaseException as e:
        return SectionOutcome(OutcomeKind.FAULT, error=e)
    return SectionOutcome(OutcomeKind.OK, value=value)


def _discard_result(task: asyncio.Task) -> None:
    # Abandoned section tasks must not log "exception was never retrieved"
    if not task.cancelled():
        task.exception()


# =============================================================================
# Lock Guard
# =============================================================================

class LockGuard:
    """
    Distributed lock around a critical section.

    Args:
        store: LockStore backend (usually RedisLockStore)
        key: Lock key, must be non-empty; ``config.key_prefix`` is prepended
        config: Base settings; defaults to ``LockGuardConfig()``
        retry_limit: Max acquisition attempts (overrides config)
        lease: Lock TTL in seconds (overrides config)
        heartbeat_interval: Seconds between lease renewals (overrides config)
        backoff: Delay strategy between attempts; full jitter by default
        token_factory: Callable returning a fresh ownership token
        on_renewal_failure: Called with (key, error) for every failed renewal

    Raises:
        LockConfigError: empty key or out-of-range option
    """

    def __init__(
        self,
        store: LockStore,
        key: str,
        *,
        config: Optional[LockGuardConfig] = None,
        retry_limit: Optional[int] = None,
        lease: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        backoff: Optional[BackoffStrategy] = None,
        token_factory: Callable[[], str] = generate_token,
        on_renewal_failure: Optional[RenewalFailureHook] = None,
    ):
        config = (config or LockGuardConfig()).with_overrides(
            retry_limit=retry_limit,
            lease_seconds=lease,
            heartbeat_interval_seconds=heartbeat_interval,
        )
        config.validate()

        self._store = store
        self._key = config.resolve_key(key)
        self._config = config
        self._backoff = backoff or FullJitterBackoff(
            base=config.backoff_base_seconds,
            cap=config.backoff_cap_seconds,
        )
        self._token_factory = token_factory
        self._on_renewal_failure = on_renewal_failure
        self._metrics = LockGuardMetrics()
        self._cleanup_tasks: Set[asyncio.Task] = set()

    @property
    def key(self) -> str:
        return self._key

    @property
    def retry_limit(self) -> int:
        return self._config.retry_limit

    @property
    def lease(self) -> float:
        return self._config.lease_seconds

    @property
    def heartbeat_interval(self) -> float:
        return self._config.heartbeat_interval_seconds

    @property
    def metrics(self) -> LockGuardMetrics:
        return self._metrics

    def new_state(self) -> LockState:
        """Fresh per-run state; never share one between runs."""
        return LockState(key=self._key, lease=self.lease, retry_limit=self.retry_limit)

    # =========================================================================
    # Execution Supervisor
    # =========================================================================

    async def run(
        self,
        handler: Handler,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Acquire the lock, run ``handler(ctx)`` while renewing the lease, release.

        ``cancel_event`` and ``timeout`` (seconds from the start of this call)
        are only watched once the lock is held; acquisition runs to completion.

        Returns:
            Whatever the handler returned.

        Raises:
            LockNotObtainedError: every attempt failed
            LockRunCancelledError: ``cancel_event`` was set first
            LockRunTimeoutError: the deadline passed first
            CriticalSectionFault: the handler died with a non-Exception
            Exception: anything the handler raised, unchanged
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        state = self.new_state()

        await self._acquire(state)

        ctx = LockContext(
            key=state.key,
            token=state.token,
            lease=state.lease,
            cancel_event=cancel_event,
            deadline=deadline,
        )
        heartbeat = LeaseHeartbeat(
            self._store,
            state.key,
            state.lease,
            self.heartbeat_interval,
            metrics=self._metrics,
            on_failure=self._on_renewal_failure,
            shutdown_timeout=self._config.heartbeat_shutdown_timeout_seconds,
        )

        section: Optional[asyncio.Task] = None
        try:
            state.transition(LockPhase.RUNNING)
            section = asyncio.create_task(
                _run_section(handler, ctx),
                name=f"lockguard_section_{state.key}",
            )
            section.add_done_callback(lambda _task: heartbeat.stop())
            heartbeat.start()

            outcome = await self._await_outcome(state, section, cancel_event, deadline, timeout)
        finally:
            try:
                await heartbeat.aclose()
            finally:
                if section is not None and not section.done():
                    section.cancel()
                    section.add_done_callback(_discard_result)
                await asyncio.shield(self._release(state))

        if outcome.kind is OutcomeKind.FAULT:
            self._metrics.faults += 1
            logger.error(f"[LockGuard] Critical section fault: {state.key}: {outcome.error!r}")
        return outcome.unwrap(state.key)

    async def _await_outcome(
        self,
        state: LockState,
        section: asyncio.Task,
        cancel_event: Optional[asyncio.Event],
        deadline: Optional[float],
        timeout: Optional[float],
    ) -> SectionOutcome:
        waiters = {section}
        cancel_waiter: Optional[asyncio.Task] = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(
                cancel_event.wait(),
                name=f"lockguard_cancel_{state.key}",
            )
            waiters.add(cancel_waiter)

        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if section in done:
            if section.cancelled():
                return SectionOutcome(
                    OutcomeKind.FAULT,
                    error=asyncio.CancelledError("critical section was cancelled"),
                )
            return section.result()

        self._metrics.cancellations += 1
        if cancel_waiter is not None and cancel_waiter in done:
            logger.info(f"[LockGuard] Run cancelled by caller: {state.key}")
            raise LockRunCancelledError(state.key)

        logger.info(f"[LockGuard] Run deadline exceeded: {state.key}")
        raise LockRunTimeoutError(state.key, timeout)

    # =========================================================================
    # Acquisition Loop
    # =========================================================================

    async def _acquire(self, state: LockState) -> None:
        for attempt in range(state.retry_limit):
            if await self._try_obtain(state):
                self._metrics.acquisitions += 1
                logger.debug(
                    f"[LockGuard] Lock acquired: {state.key} "
                    f"(token: {state.token[:8]}..., attempt {attempt + 1}/{state.retry_limit})"
                )
                return

            if attempt < state.retry_limit - 1:
                await asyncio.sleep(self._backoff.delay(attempt))

        state.transition(LockPhase.FAILED)
        self._metrics.not_obtained += 1
        logger.warning(f"[LockGuard] Lock not obtained: {state.key} ({state.attempts} attempts)")
        raise LockNotObtainedError(state.key, state.attempts)

    async def _try_obtain(self, state: LockState) -> bool:
        self._metrics.attempts += 1
        try:
            token = self._token_factory()
        except Exception as e:
            state.begin_attempt(None)
            logger.debug(f"[LockGuard] Token generation failed: {state.key}: {e}")
            return False

        state.begin_attempt(token)
        # An in-flight SET NX is not cancellable; it may land after the caller gives up
        write = asyncio.ensure_future(self._store.set_if_absent(state.key, token, state.lease))
        try:
            obtained = await asyncio.shield(write)
        except asyncio.CancelledError:
            await self._settle_abandoned_write(state, write)
            raise
        except Exception as e:
            logger.debug(f"[LockGuard] Conditional set failed: {state.key}: {e}")
            return False

        if not obtained:
            logger.debug(f"[LockGuard] Lock busy: {state.key}")
            return False

        state.mark_held(time.monotonic())
        return True

    async def _settle_abandoned_write(self, state: LockState, write: asyncio.Future) -> None:
        """Release the key if a write the caller stopped waiting for still succeeded."""
        try:
            obtained = await asyncio.shield(write)
        except asyncio.CancelledError:
            # Cancelled again: finish the cleanup once the write completes
            write.add_done_callback(lambda fut: self._release_after_write(state, fut))
            raise
        except Exception:
            return

        if obtained:
            state.mark_held(time.monotonic())
            logger.info(f"[LockGuard] Releasing lock acquired by a cancelled run: {state.key}")
            await asyncio.shield(self._release(state))

    def _release_after_write(self, state: LockState, write: asyncio.Future) -> None:
        if write.cancelled() or write.exception() is not None or not write.result():
            return
        state.mark_held(time.monotonic())
        logger.info(f"[LockGuard] Releasing lock acquired by a cancelled run: {state.key}")
        task = asyncio.ensure_future(self._release(state))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    # =========================================================================
    # Atomic Release
    # =========================================================================

    async def _release(self, state: LockState) -> None:
        """Compare-and-delete the key if this run holds it. Never raises store errors."""
        if not state.held:
            return

        state.transition(LockPhase.RELEASING)
        try:
            deleted = await self._store.compare_and_delete(state.key, state.token)
        except Exception as e:
            self._metrics.release_errors += 1
            logger.warning(f"[LockGuard] Release failed: {state.key}: {e} (lease will expire on its own)")
        else:
            if deleted:
                self._metrics.releases += 1
                logger.debug(f"[LockGuard] Lock released: {state.key} (token: {state.token[:8]}...)")
            else:
                self._metrics.release_misses += 1
                logger.warning(
                    f"[LockGuard] Cannot release lock - no longer owned: {state.key} "
                    f"(our token: {state.token[:8]}..., lease likely expired)"
                )
        finally:
            if state.acquired_at is not None:
                self._metrics.record_release((time.monotonic() - state.acquired_at) * 1000)
            state.mark_released()


# =============================================================================
# Convenience
# =============================================================================

async def run_locked(
    store: LockStore,
    key: str,
    handler: Handler,
    *,
    cancel_event: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None,
    **options: Any,
) -> Any:
    """
    One-shot helper: build a LockGuard and run ``handler`` under it.

    Example:
        await run_locked(store, "cache:rebuild", rebuild_cache, retry_limit=5)
    """
    guard = LockGuard(store, key, **options)
    return await guard.run(handler, cancel_event=cancel_event, timeout=timeout)
