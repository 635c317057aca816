"""
Runtime shell for the turn-taking state machine.

Responsibilities:
- Own the authoritative TurnTakingState
- Call the pure reducer exactly once per trigger
- Execute commands (subscriber notification, timers, logging)
- Convert auto-idle timer expiry into an AutoIdle trigger

Non-responsibilities:
- NO transition logic (reducer only)
- NO knowledge of provider wire events (translator only)
- NO book narration control (reading session observes us)
"""

from __future__ import annotations

import time
from collections import deque
from typing import Any, Callable, Mapping

from orchestrator.commands import (
    CancelTimer,
    Command,
    LogEvent,
    NotifyNarration,
    NotifyStateChange,
    StartTimer,
)
from orchestrator.enums.turn_state import TurnState
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import TurnTakingState
from orchestrator.timers import TimerRegistry
from orchestrator.triggers import (
    AutoIdle,
    ManualReset,
    NarrationEnded,
    NarrationStarted,
    SetEnabled,
    Trigger,
    TriggerType,
)
from observability.logger import log_event
from constants import AUTO_IDLE_TIMEOUT_MS


StateListener = Callable[[TurnState], None]
NarrationListener = Callable[[bool], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class TurnTakingMachine:
    """
    Single authoritative turn-taking state for one conversation.

    Guarantees:
    - apply_trigger never raises
    - Triggers are applied one at a time; a trigger applied from inside a
      subscriber callback is queued and runs after the current one completes
    - All side effects occur after state has been updated
    - Timers re-enter through apply_trigger (single entry point)
    """

    def __init__(
        self,
        *,
        auto_idle_ms: int = AUTO_IDLE_TIMEOUT_MS,
        session_id: str | None = None,
    ) -> None:
        self._state = TurnTakingState()
        self._auto_idle_ms = auto_idle_ms
        self._timers = TimerRegistry(owner="turn_taking")
        self._listeners: list[StateListener] = []
        self._narration_listeners: list[NarrationListener] = []
        self._pending: deque[tuple[Any, Mapping[str, Any] | None]] = deque()
        self._dispatching = False
        self.session_id = session_id

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self._state.turn_state

    @property
    def snapshot(self) -> TurnTakingState:
        """Full immutable state. Consumers must never modify it."""
        return self._state

    @property
    def narration_active(self) -> bool:
        return self._state.narration_active

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a state-change listener.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def subscribe_narration(self, listener: NarrationListener) -> Callable[[], None]:
        self._narration_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._narration_listeners:
                self._narration_listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def apply_trigger(
        self,
        trigger: Trigger,
        context: Mapping[str, Any] | None = None,
    ) -> TurnState:
        """
        Apply one trigger and execute the resulting commands.

        Returns the turn state after every queued trigger has been applied.
        """
        self._pending.append((trigger, context))
        if self._dispatching:
            return self._state.turn_state

        self._dispatching = True
        try:
            while self._pending:
                next_trigger, next_context = self._pending.popleft()
                self._apply_one(next_trigger, next_context)
        finally:
            self._dispatching = False
        return self._state.turn_state

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------

    def reset(self, reason: str = "manual") -> TurnState:
        return self.apply_trigger(
            ManualReset(trigger_type=TriggerType.MANUAL_RESET, ts_ms=_now_ms()),
            {"reason": reason},
        )

    def set_enabled(self, enabled: bool) -> TurnState:
        return self.apply_trigger(
            SetEnabled(
                trigger_type=TriggerType.SET_ENABLED,
                ts_ms=_now_ms(),
                enabled=enabled,
            )
        )

    def notify_narration(self, active: bool, source: str) -> None:
        """Record that book narration took (or released) audio output."""
        if active:
            trigger: Trigger = NarrationStarted(
                trigger_type=TriggerType.NARRATION_STARTED, ts_ms=_now_ms()
            )
        else:
            trigger = NarrationEnded(
                trigger_type=TriggerType.NARRATION_ENDED, ts_ms=_now_ms()
            )
        self.apply_trigger(trigger, {"source": source})

    def shutdown(self) -> None:
        """Cancel the watchdog. Listeners are kept."""
        self._timers.cancel_all()

    async def aclose(self) -> None:
        await self._timers.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _apply_one(self, trigger: Any, context: Mapping[str, Any] | None) -> None:
        try:
            new_state, commands = reduce(
                self._state, trigger, context, auto_idle_ms=self._auto_idle_ms
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "turn_reducer_failed",
                "session_id": self.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return

        self._state = new_state
        for cmd in commands:
            self._execute_command(cmd)

    def _execute_command(self, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "session_id": self.session_id})

        elif isinstance(cmd, NotifyStateChange):
            for listener in list(self._listeners):
                self._safe_call(listener, cmd.current, "state_listener_failed")

        elif isinstance(cmd, NotifyNarration):
            for narration_listener in list(self._narration_listeners):
                self._safe_call(narration_listener, cmd.active, "narration_listener_failed")

        elif isinstance(cmd, StartTimer):
            self._start_timer(cmd)

        elif isinstance(cmd, CancelTimer):
            self._timers.cancel(cmd.timer_id)

        else:
            log_event({
                "level": "WARNING",
                "event_type": "unknown_turn_command",
                "session_id": self.session_id,
                "command": type(cmd).__name__,
            })

    def _start_timer(self, cmd: StartTimer) -> None:
        if cmd.timeout_trigger_type is not TriggerType.AUTO_IDLE:
            log_event({
                "level": "WARNING",
                "event_type": "unknown_timer_trigger",
                "session_id": self.session_id,
                "timer_id": cmd.timer_id,
                "trigger_type": cmd.timeout_trigger_type.value,
            })
            return

        generation = cmd.generation

        def _fire() -> None:
            self.apply_trigger(
                AutoIdle(
                    trigger_type=TriggerType.AUTO_IDLE,
                    ts_ms=_now_ms(),
                    generation=generation,
                ),
                {"source": "watchdog"},
            )

        self._timers.start(cmd.timer_id, cmd.duration_ms, _fire)

    def _safe_call(self, fn: Callable[[Any], None], arg: Any, failure_event: str) -> None:
        try:
            fn(arg)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": failure_event,
                "session_id": self.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
