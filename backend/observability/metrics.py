"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate

Used around connect attempts and tool-call execution.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once, also when the block raises
    - The yielded dict may be filled in by the block; it is merged into
      the metric's details (e.g. outcome="timeout")

    Usage:
        with timed("tool_call", session_id=sid, details={"tool": name}) as extra:
            ...
            extra["outcome"] = "ok"
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    outcome = "ok"
    try:
        yield extra
    except BaseException:
        outcome = "raised"
        raise
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "session_id": session_id,
            "details": {"outcome": outcome, **(details or {}), **extra},
        })
