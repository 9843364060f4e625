"""
Lease Renewal Heartbeat
=======================

Background task that extends a held lock's lease at a fixed interval while
the critical section runs.

Renewal is best-effort. A failed tick (store error, or the key already gone)
never reaches the caller or the critical section; it is logged, counted and
handed to the optional ``on_failure`` hook so the gap stays inspectable.
Repeated failures can let the lease expire under a still-running critical
section. Lease-based locking cannot rule that out.

The heartbeat stops on an explicit signal (``stop()``). ``aclose()`` also
cancels an in-flight renewal and waits a bounded time for the task to exit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from lockguard.metrics import LockGuardMetrics
from lockguard.store import LockStore

logger = logging.getLogger(__name__)

RenewalFailureHook = Callable[[str, Optional[BaseException]], None]


class LeaseHeartbeat:
    """Periodic ``extend(key, lease)`` driver for one held lock."""

    def __init__(
        self,
        store: LockStore,
        key: str,
        lease: float,
        interval: float,
        metrics: Optional[LockGuardMetrics] = None,
        on_failure: Optional[RenewalFailureHook] = None,
        shutdown_timeout: float = 1.0,
    ):
        self._store = store
        self._key = key
        self._lease = lease
        self._interval = interval
        self._metrics = metrics or LockGuardMetrics()
        self._on_failure = on_failure
        self._shutdown_timeout = shutdown_timeout
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"lockguard_heartbeat_{self._key}")

    def stop(self) -> None:
        """Signal the loop to exit before its next renewal."""
        self._stop.set()

    async def aclose(self) -> None:
        """Stop the loop and wait for the task to finish."""
        self._stop.set()
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self._shutdown_timeout)
        if not done:
            logger.warning(f"[LockGuard] Heartbeat for {self._key} did not stop within {self._shutdown_timeout}s")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            await self._renew()

    async def _renew(self) -> None:
        self.ticks += 1
        try:
            extended = await self._store.extend(self._key, self._lease)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(e)
            return

        if extended:
            self._metrics.renewals += 1
            logger.debug(f"[LockGuard] Lease extended: {self._key} ({self._lease}s)")
        else:
            self._record_failure(None)

    def _record_failure(self, error: Optional[BaseException]) -> None:
        self._metrics.renewal_failures += 1
        if error is None:
            logger.warning(f"[LockGuard] Lease renewal found no key: {self._key} (lease already expired)")
        else:
            logger.warning(f"[LockGuard] Lease renewal failed: {self._key}: {error}")

        if self._on_failure is not None:
            try:
                self._on_failure(self._key, error)
            except Exception as hook_error:
                logger.error(f"[LockGuard] Renewal failure hook raised: {hook_error}")
