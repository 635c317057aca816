"""
Named one-shot timers on the asyncio event loop.

Responsibilities:
- Start / restart / cancel named timers
- Invoke a synchronous callback on expiry
- Survive callback failures (logged, never propagated)

Non-responsibilities:
- NO decisions about what a timer means
- NO stale gating (callers encode generations in their callbacks)

One registry is owned by each state machine runtime; the auto-idle
watchdog and the page-complete timer both run on this class.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from observability.logger import log_event


TimerCallback = Callable[[], None]


class TimerRegistry:
    """
    Registry of named asyncio timer tasks.

    Starting a timer that is already running replaces it.
    Cancelling an unknown timer is a no-op.
    """

    def __init__(self, *, owner: str) -> None:
        self._owner = owner
        self._timers: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, timer_id: str, duration_ms: int, callback: TimerCallback) -> bool:
        """
        Start or replace a timer.

        Returns False (and logs) when no event loop is running, in which
        case nothing is scheduled.
        """
        self.cancel(timer_id)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_event({
                "level": "WARNING",
                "event_type": "timer_skipped_no_loop",
                "owner": self._owner,
                "timer_id": timer_id,
            })
            return False

        task = loop.create_task(self._run(timer_id, duration_ms, callback))
        self._timers[timer_id] = task
        return True

    def cancel(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done():
            task.cancel()

    def is_pending(self, timer_id: str) -> bool:
        task = self._timers.get(timer_id)
        return task is not None and not task.done()

    def cancel_all(self) -> None:
        for timer_id in list(self._timers):
            self.cancel(timer_id)

    async def aclose(self) -> None:
        """Cancel all timers and wait for their tasks to finish."""
        tasks = list(self._timers.values())
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self, timer_id: str, duration_ms: int, callback: TimerCallback) -> None:
        try:
            await asyncio.sleep(duration_ms / 1000.0)
        except asyncio.CancelledError:
            # Timer was cancelled - this is normal
            return

        # Unregister before firing so the callback may re-arm the same id
        if self._timers.get(timer_id) is asyncio.current_task():
            del self._timers[timer_id]

        try:
            callback()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "timer_callback_failed",
                "owner": self._owner,
                "timer_id": timer_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
