"""Debounce primitives for the navigation watcher."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, Set


class GateDecision(str, Enum):
    """Outcome of asking the gate whether to capture now."""

    CAPTURE = "capture"
    DUPLICATE = "duplicate"
    BUSY = "busy"
    NO_FLOW = "no_flow"


class CaptureGate:
    """
    Decides, in one synchronous step, whether a capture may start.

    ``begin()`` checks and claims in the same call with no await in between,
    so every signal that races for the same navigation sees the claim made
    by whichever got there first. The caller must follow a ``CAPTURE``
    decision with exactly one ``succeed()`` or ``fail()``.
    """

    def __init__(self) -> None:
        self.last_captured_url: Optional[str] = None
        self.in_flight = False

    def begin(self, url: str, has_active_flow: bool) -> GateDecision:
        if url == self.last_captured_url:
            return GateDecision.DUPLICATE
        if self.in_flight:
            return GateDecision.BUSY
        if not has_active_flow:
            return GateDecision.NO_FLOW
        self.in_flight = True
        self.last_captured_url = url
        return GateDecision.CAPTURE

    def succeed(self) -> None:
        self.in_flight = False

    def fail(self) -> None:
        # Unset so the same URL is retried on the next trigger.
        self.last_captured_url = None
        self.in_flight = False


class ScheduledRequest:
    """
    At most one pending delayed call. Scheduling again cancels the pending
    one and starts a new countdown. Once the countdown elapses the call is
    detached and can no longer be cancelled by a later ``schedule()``.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()
        self.reason: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        """Pending, or detached and still running."""
        return self.pending or bool(self._running)

    def schedule(
        self,
        delay_s: float,
        callback: Callable[[str], Awaitable[object]],
        reason: str,
    ) -> None:
        self.cancel()
        self.reason = reason
        self._task = asyncio.create_task(self._fire(delay_s, callback, reason))

    async def _fire(self, delay_s: float, callback: Callable[[str], Awaitable[object]], reason: str) -> None:
        await asyncio.sleep(delay_s)
        task = asyncio.current_task()
        self._task = None
        self.reason = None
        self._running.add(task)
        try:
            await callback(reason)
        finally:
            self._running.discard(task)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.reason = None

    async def drain(self) -> None:
        """Wait for the pending countdown and any detached call to finish."""
        while self.busy:
            tasks = [t for t in [self._task, *self._running] if t is not None]
            await asyncio.gather(*tasks, return_exceptions=True)
