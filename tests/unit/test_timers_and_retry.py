# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

from constants import CONNECT_MAX_RETRIES, CONNECT_RETRY_DELAY_MS
from orchestrator.cancellation import CancellationToken, OperationCancelled
from orchestrator.retry import (
    FailureType,
    RetryAttempt,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from orchestrator.timers import TimerRegistry


# ---------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------

def test_transient_failures_allow_three_retries():
    attempt = reset_attempt()
    allowed = 0
    while should_retry(failure=FailureType.MEDIA_ACCESS, attempt=attempt):
        allowed += 1
        attempt = next_attempt(attempt)

    assert allowed == CONNECT_MAX_RETRIES == 3
    assert attempt == RetryAttempt(attempt=3)


def test_authentication_is_never_retried():
    assert not should_retry(failure=FailureType.AUTHENTICATION, attempt=reset_attempt())
    assert get_retry_delay_ms(
        failure=FailureType.AUTHENTICATION, attempt=reset_attempt()
    ) == 0


def test_retry_delay_is_fixed():
    delays = {
        get_retry_delay_ms(failure=FailureType.CREDENTIAL, attempt=RetryAttempt(n))
        for n in range(3)
    }

    assert delays == {CONNECT_RETRY_DELAY_MS}


# ---------------------------------------------------------------------
# Cancellation token
# ---------------------------------------------------------------------

def test_cancel_is_one_way_and_first_reason_wins():
    async def scenario() -> CancellationToken:
        token = CancellationToken()
        token.cancel("user")
        token.cancel("server")
        return token

    token = asyncio.run(scenario())

    assert token.cancelled
    assert token.reason == "user"


def test_raise_if_cancelled():
    async def scenario() -> str:
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("bye")
        try:
            token.raise_if_cancelled()
        except OperationCancelled as exc:
            return str(exc)
        return "not raised"

    assert asyncio.run(scenario()) == "bye"


def test_sleep_returns_early_when_cancelled():
    async def scenario() -> tuple[bool, bool, bool]:
        token = CancellationToken()
        elapsed = await token.sleep(5)
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel, "stop")
        interrupted = await asyncio.wait_for(token.sleep(10_000), timeout=1)
        again = await token.sleep(10_000)
        return elapsed, interrupted, again

    elapsed, interrupted, again = asyncio.run(scenario())

    assert elapsed is True
    assert interrupted is False
    assert again is False


# ---------------------------------------------------------------------
# Timer registry
# ---------------------------------------------------------------------

def test_restarting_a_timer_replaces_it():
    async def scenario() -> list[str]:
        fired: list[str] = []
        timers = TimerRegistry(owner="test")
        timers.start("t", 20, lambda: fired.append("first"))
        timers.start("t", 20, lambda: fired.append("second"))
        await asyncio.sleep(0.08)
        await timers.aclose()
        return fired

    assert asyncio.run(scenario()) == ["second"]


def test_cancel_is_idempotent_and_prevents_firing():
    async def scenario() -> tuple[list[str], bool]:
        fired: list[str] = []
        timers = TimerRegistry(owner="test")
        timers.start("t", 20, lambda: fired.append("x"))
        pending = timers.is_pending("t")
        timers.cancel("t")
        timers.cancel("t")
        timers.cancel("unknown")
        await asyncio.sleep(0.05)
        return fired, pending

    fired, pending = asyncio.run(scenario())

    assert pending
    assert not fired


def test_callback_may_rearm_same_timer():
    async def scenario() -> int:
        count = 0
        timers = TimerRegistry(owner="test")

        def tick() -> None:
            nonlocal count
            count += 1
            if count < 3:
                timers.start("tick", 5, tick)

        timers.start("tick", 5, tick)
        await asyncio.sleep(0.1)
        await timers.aclose()
        return count

    assert asyncio.run(scenario()) == 3


def test_failing_callback_is_contained():
    async def scenario() -> bool:
        timers = TimerRegistry(owner="test")

        def boom() -> None:
            raise RuntimeError("boom")

        timers.start("t", 1, boom)
        await asyncio.sleep(0.03)
        return timers.is_pending("t")

    assert asyncio.run(scenario()) is False


def test_start_without_loop_is_skipped():
    timers = TimerRegistry(owner="test")

    assert timers.start("t", 10, lambda: None) is False
    assert not timers.is_pending("t")
