"""
Tool-call dispatcher.

Responsibilities:
- Track in-flight tool calls by call id (one per id)
- Route each call to the handler registered for its tool name
- Always resolve: send a function_call_output (result or apology) and
  then exactly one continuation request over the channel
- Report every resolution to the host callbacks

Non-responsibilities:
- NO knowledge of what tools do (handlers do)
- NO channel ownership (replies go through ToolReplyChannel)

Each call runs as its own task so a slow catalog fetch never blocks
lifecycle events that arrive behind it on the channel.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Protocol

from errors import StateConflictError, ToolExecutionError
from observability.logger import log_event, preview
from observability.metrics import timed
from protocol.envelopes import ToolCallEnvelope
from constants import TOOL_CALL_TIMEOUT_S


UNKNOWN_TOOL_REPLY = "I don't know how to handle that request right now."
TOOL_FAILURE_REPLY = "I'm having trouble with that right now. Let's try something else!"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PendingToolCall:
    """An in-flight tool invocation awaiting its reply."""
    call_id: str
    name: str
    arguments: str
    dispatched_at_ms: int


@dataclass(frozen=True)
class ToolOutcome:
    """
    What a handler wants sent back as the function_call_output.

    is_error marks explanatory/apology replies; the text is still what the
    remote agent receives.
    """
    output: str
    is_error: bool = False

    @staticmethod
    def ok(output: str) -> ToolOutcome:
        return ToolOutcome(output=output)

    @staticmethod
    def error(message: str) -> ToolOutcome:
        return ToolOutcome(output=message, is_error=True)


ToolHandler = Callable[[str, str], Awaitable[ToolOutcome]]
ResultCallback = Callable[[str, str], None]
ErrorCallback = Callable[[str | None, str], None]


class ToolReplyChannel(Protocol):
    """Outbound half of the channel used to resolve tool calls."""

    async def send_tool_output(self, call_id: str, output: str) -> bool: ...

    async def request_continuation(self) -> bool: ...


# ---------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------

class ToolCallDispatcher:
    """Routes tool calls to handlers and guarantees every call is answered."""

    def __init__(
        self,
        *,
        channel: ToolReplyChannel,
        timeout_s: float = TOOL_CALL_TIMEOUT_S,
        on_function_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._channel = channel
        self._timeout_s = timeout_s
        self._handlers: dict[str, ToolHandler] = {}
        self._pending: dict[str, PendingToolCall] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self.on_function_result = on_function_result
        self.on_error = on_error
        self.session_id: str | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    @property
    def pending(self) -> Mapping[str, PendingToolCall]:
        return dict(self._pending)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, envelope: ToolCallEnvelope) -> asyncio.Task[None] | None:
        """
        Start handling one tool call.

        Must be called from inside the event loop. Returns the task, or
        None when the call id is already in flight (second one ignored).
        """
        if envelope.call_id in self._pending:
            log_event({
                "level": "WARNING",
                "event_type": "tool_call_duplicate",
                "session_id": self.session_id,
                "call_id": envelope.call_id,
                "tool": envelope.name,
            })
            return None

        pending = PendingToolCall(
            call_id=envelope.call_id,
            name=envelope.name,
            arguments=envelope.arguments,
            dispatched_at_ms=_now_ms(),
        )
        self._pending[pending.call_id] = pending

        log_event({
            "event_type": "tool_call_dispatched",
            "session_id": self.session_id,
            "call_id": pending.call_id,
            "tool": pending.name,
            "arguments_preview": preview(pending.arguments),
            "in_flight": len(self._pending),
        })

        task = asyncio.get_running_loop().create_task(self._run(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        """Cancel in-flight handlers. Used on disconnect."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._pending:
            log_event({
                "level": "WARNING",
                "event_type": "tool_calls_abandoned",
                "session_id": self.session_id,
                "call_ids": sorted(self._pending),
            })
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self, pending: PendingToolCall) -> None:
        with timed(
            "tool_call",
            session_id=self.session_id,
            details={"tool": pending.name, "call_id": pending.call_id},
        ) as extra:
            outcome = await self._invoke(pending)
            extra["is_error"] = outcome.is_error

        await self._resolve(pending, outcome)

    async def _invoke(self, pending: PendingToolCall) -> ToolOutcome:
        handler = self._handlers.get(pending.name)
        if handler is None:
            log_event({
                "level": "WARNING",
                "event_type": "tool_call_unknown",
                "session_id": self.session_id,
                "call_id": pending.call_id,
                "tool": pending.name,
            })
            return ToolOutcome.error(UNKNOWN_TOOL_REPLY)

        try:
            return await asyncio.wait_for(
                handler(pending.call_id, pending.arguments),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError:
            reason = "timeout"
            message = TOOL_FAILURE_REPLY
        except StateConflictError as exc:
            reason = "state_conflict"
            message = str(exc)
        except ToolExecutionError as exc:
            reason = f"tool_execution_error: {exc}"
            message = TOOL_FAILURE_REPLY
        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = f"{type(exc).__name__}: {exc}"
            message = TOOL_FAILURE_REPLY

        log_event({
            "level": "ERROR",
            "event_type": "tool_call_failed",
            "session_id": self.session_id,
            "call_id": pending.call_id,
            "tool": pending.name,
            "reason": reason,
        })
        return ToolOutcome.error(message)

    async def _resolve(self, pending: PendingToolCall, outcome: ToolOutcome) -> None:
        sent = False
        try:
            sent = await self._channel.send_tool_output(pending.call_id, outcome.output)
            if sent:
                await self._channel.request_continuation()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "tool_reply_failed",
                "session_id": self.session_id,
                "call_id": pending.call_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
        finally:
            self._pending.pop(pending.call_id, None)

        log_event({
            "event_type": "tool_call_resolved",
            "session_id": self.session_id,
            "call_id": pending.call_id,
            "tool": pending.name,
            "is_error": outcome.is_error,
            "sent": sent,
            "latency_ms": _now_ms() - pending.dispatched_at_ms,
        })

        if outcome.is_error:
            callback_err = self.on_error
            if callback_err is not None:
                self._safe_callback(callback_err, pending.call_id, outcome.output)
        else:
            callback_ok = self.on_function_result
            if callback_ok is not None:
                self._safe_callback(callback_ok, pending.call_id, outcome.output)

    def _safe_callback(
        self, fn: Callable[[str, str], None], call_id: str, text: str
    ) -> None:
        try:
            fn(call_id, text)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "tool_host_callback_failed",
                "session_id": self.session_id,
                "call_id": call_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
