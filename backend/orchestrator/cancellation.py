"""
Cancellation tokens for long-running async operations.

Responsibilities:
- Carry a one-way "cancelled" flag across await points
- Provide a cancellable sleep for retry delays

Non-responsibilities:
- NO retry logic
- NO resource teardown (owners release their own resources)

disconnect() cancels the token of the connect() in progress; the connect
loop checks it before each attempt and after each suspension point.
"""

from __future__ import annotations

import asyncio


class OperationCancelled(Exception):
    """Raised inside an operation whose token was cancelled."""


class CancellationToken:
    """
    One-shot cancellation flag.

    Once cancelled a token stays cancelled; create a new token per operation.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Idempotent: the first reason wins."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "cancelled")

    async def sleep(self, delay_ms: int) -> bool:
        """
        Sleep for delay_ms unless cancelled first.

        Returns True if the full delay elapsed, False if cancelled.
        """
        if self._event.is_set():
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_ms / 1000.0)
        except asyncio.TimeoutError:
            return True
        return False
