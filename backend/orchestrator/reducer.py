"""
Pure turn-taking reducer.

(state, trigger) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, trigger) pair is handled or explicitly ignored (logged).
- Never raises: malformed triggers are logged and ignored.
"""

# Reducer owns timer semantics; the runtime must not cancel timers implicitly.

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping

from orchestrator.commands import (
    CancelTimer,
    Command,
    LogEvent,
    NotifyNarration,
    NotifyStateChange,
    StartTimer,
)
from orchestrator.enums.turn_state import TurnState
from orchestrator.state_dataclass import TurnTakingState
from orchestrator.triggers import (
    AutoIdle,
    Fault,
    SetEnabled,
    Trigger,
    TriggerType,
)
from constants import AUTO_IDLE_TIMEOUT_MS


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_AUTO_IDLE = "auto_idle"


# =============================================================================
# Transition table
# =============================================================================

NON_TERMINAL_STATES: frozenset[TurnState] = frozenset({
    TurnState.LOADING,
    TurnState.APPU_SPEAKING,
    TurnState.APPU_THINKING,
    TurnState.CHILD_SPEAKING,
    TurnState.APPU_SPEAKING_STOPPED,
    TurnState.CHILD_SPEAKING_STOPPED,
})

_TARGETS: dict[TriggerType, TurnState] = {
    TriggerType.SESSION_CREATED: TurnState.LOADING,
    TriggerType.SESSION_CONFIRMED: TurnState.IDLE,
    TriggerType.AGENT_AUDIO_START: TurnState.APPU_SPEAKING,
    TriggerType.AGENT_AUDIO_STOP: TurnState.APPU_SPEAKING_STOPPED,
    TriggerType.USER_SPEECH_START: TurnState.CHILD_SPEAKING,
    TriggerType.USER_SPEECH_STOP: TurnState.CHILD_SPEAKING_STOPPED,
    TriggerType.AGENT_THINKING: TurnState.APPU_THINKING,
    TriggerType.AGENT_TURN_COMPLETE: TurnState.IDLE,
}


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: TurnTakingState,
    trigger: Trigger,
    decision: str,
    details: dict[str, Any] | None = None,
    context: Mapping[str, Any] | None = None,
    level: str = "INFO",
) -> LogEvent:
    event: dict[str, Any] = {
        "ts_ms": trigger.ts_ms,
        "level": level,
        "component": "turn_taking",
        "turn_state": state.turn_state.value,
        "enabled": state.enabled,
        "event_type": trigger.trigger_type.value,
        "decision": decision,
        "details": details or {},
    }
    if context:
        event["context"] = dict(context)
    return LogEvent(event=event)


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: TurnTakingState,
    trigger: Trigger,
    reason: str,
    context: Mapping[str, Any] | None = None,
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    return state, (
        _log(state, trigger, "ignore", {"reason": reason}, context, level="DEBUG"),
    )


def _arm_watchdog(
    state: TurnTakingState, auto_idle_ms: int
) -> tuple[TurnTakingState, StartTimer]:
    generation = state.watchdog_generation + 1
    armed = replace(state, watchdog_generation=generation, watchdog_armed=True)
    return armed, StartTimer(
        timer_id=TIMER_AUTO_IDLE,
        duration_ms=auto_idle_ms,
        timeout_trigger_type=TriggerType.AUTO_IDLE,
        generation=generation,
    )


def _disarm_watchdog(
    state: TurnTakingState,
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    if not state.watchdog_armed:
        return state, ()
    return replace(state, watchdog_armed=False), (CancelTimer(timer_id=TIMER_AUTO_IDLE),)


def _transition(
    state: TurnTakingState,
    trigger: Trigger,
    target: TurnState,
    source: str,
    auto_idle_ms: int,
    context: Mapping[str, Any] | None = None,
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    """
    Move to target and (re)arm or disarm the watchdog.

    Entering a non-terminal state restarts the watchdog;
    entering IDLE or ERROR cancels it.
    """
    new_state = replace(state, turn_state=target)
    timer_cmds: tuple[Command, ...]
    if target in NON_TERMINAL_STATES:
        new_state, start = _arm_watchdog(new_state, auto_idle_ms)
        timer_cmds = (start,)
    else:
        new_state, timer_cmds = _disarm_watchdog(new_state)

    return new_state, _logs_last(timer_cmds + (
        NotifyStateChange(previous=state.turn_state, current=target),
        _log(
            new_state,
            trigger,
            "state_changed",
            {
                "from_state": state.turn_state.value,
                "to_state": target.value,
                "source": source,
            },
            context,
        ),
    ))


def _drop_same_state(
    state: TurnTakingState,
    trigger: Trigger,
    reason: str,
    auto_idle_ms: int,
    context: Mapping[str, Any] | None = None,
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    """
    Drop a trigger that does not change turn_state.

    Any trigger received mid-turn still counts as provider activity,
    so the watchdog restarts.
    """
    if state.turn_state not in NON_TERMINAL_STATES:
        return _ignore(state, trigger, reason, context)

    refreshed, start = _arm_watchdog(state, auto_idle_ms)
    return refreshed, (
        start,
        _log(
            refreshed,
            trigger,
            "ignore",
            {"reason": reason, "watchdog": "restarted"},
            context,
            level="DEBUG",
        ),
    )


def _malformed(
    state: TurnTakingState, trigger: Any
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    return state, (LogEvent(event={
        "level": "WARNING",
        "component": "turn_taking",
        "turn_state": state.turn_state.value,
        "event_type": "MALFORMED_TRIGGER",
        "decision": "ignore",
        "details": {"repr": repr(trigger)[:200]},
    }),)


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: TurnTakingState,
    trigger: Trigger,
    context: Mapping[str, Any] | None = None,
    *,
    auto_idle_ms: int = AUTO_IDLE_TIMEOUT_MS,
) -> tuple[TurnTakingState, tuple[Command, ...]]:
    """
    Pure reducer for the turn-taking state machine.

    Given the current state and a single trigger, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Idempotent: repeating a trigger is a no-op, except Fault
    - Total: every (state, trigger) pair is handled or explicitly ignored
    """
    if not isinstance(trigger, Trigger) or not isinstance(
        getattr(trigger, "trigger_type", None), TriggerType
    ):
        return _malformed(state, trigger)

    ttype = trigger.trigger_type

    # ------------------------------------------------------------------
    # Enable toggle (always accepted)
    # ------------------------------------------------------------------
    if isinstance(trigger, SetEnabled):
        if trigger.enabled == state.enabled:
            return _ignore(state, trigger, "enabled_unchanged", context)

        if trigger.enabled:
            enabled_state = replace(state, enabled=True)
            return enabled_state, (
                _log(enabled_state, trigger, "enabled", context=context),
            )

        disabled = replace(state, enabled=False)
        if state.turn_state is TurnState.IDLE:
            disabled, cmds = _disarm_watchdog(disabled)
            return disabled, cmds + (
                _log(disabled, trigger, "disabled", context=context),
            )
        new_state, cmds = _transition(
            disabled, trigger, TurnState.IDLE, "disabled", auto_idle_ms, context
        )
        return new_state, cmds

    # ------------------------------------------------------------------
    # Manual reset (always accepted, exits ERROR)
    # ------------------------------------------------------------------
    if ttype is TriggerType.MANUAL_RESET:
        if state.turn_state is TurnState.IDLE:
            if state.last_error is None:
                return _ignore(state, trigger, "already_idle", context)
            cleared = replace(state, last_error=None)
            return cleared, (
                _log(cleared, trigger, "error_cleared", context=context),
            )
        reset_state = replace(state, last_error=None)
        return _transition(
            reset_state, trigger, TurnState.IDLE, "manual_reset", auto_idle_ms, context
        )

    # ------------------------------------------------------------------
    # Disabled gating
    # ------------------------------------------------------------------
    if not state.enabled:
        return _ignore(state, trigger, "disabled", context)

    # ------------------------------------------------------------------
    # Narration ownership (orthogonal to turn_state)
    # ------------------------------------------------------------------
    if ttype in (TriggerType.NARRATION_STARTED, TriggerType.NARRATION_ENDED):
        active = ttype is TriggerType.NARRATION_STARTED
        if state.narration_active == active:
            return _ignore(state, trigger, "narration_unchanged", context)
        narrated = replace(state, narration_active=active)
        return narrated, (
            NotifyNarration(active=active),
            _log(narrated, trigger, "narration_changed", {"active": active}, context),
        )

    # ------------------------------------------------------------------
    # Auto-idle watchdog
    # ------------------------------------------------------------------
    if isinstance(trigger, AutoIdle):
        if (
            not state.watchdog_armed
            or trigger.generation != state.watchdog_generation
        ):
            return _ignore(state, trigger, "stale_auto_idle", context)
        if state.turn_state not in NON_TERMINAL_STATES:
            disarmed = replace(state, watchdog_armed=False)
            return _ignore(disarmed, trigger, "auto_idle_in_terminal_state", context)
        fired = replace(state, watchdog_armed=False)
        new_state, cmds = _transition(
            fired, trigger, TurnState.IDLE, "auto_idle", auto_idle_ms, context
        )
        return new_state, cmds + (
            _log(
                new_state,
                trigger,
                "auto_idle_fired",
                {"from_state": state.turn_state.value},
                context,
                level="WARNING",
            ),
        )

    # ------------------------------------------------------------------
    # Fault (always re-fires, even from ERROR)
    # ------------------------------------------------------------------
    if isinstance(trigger, Fault):
        faulted = replace(
            state,
            turn_state=TurnState.ERROR,
            last_error=trigger.reason,
            fault_count=state.fault_count + 1,
        )
        faulted, timer_cmds = _disarm_watchdog(faulted)
        return faulted, _logs_last(timer_cmds + (
            NotifyStateChange(previous=state.turn_state, current=TurnState.ERROR),
            _log(
                faulted,
                trigger,
                "state_changed",
                {
                    "from_state": state.turn_state.value,
                    "to_state": TurnState.ERROR.value,
                    "source": "fault",
                },
                context,
            ),
            _log(
                faulted,
                trigger,
                "turn_fault",
                {"reason": trigger.reason, "fault_count": faulted.fault_count},
                context,
                level="WARNING",
            ),
        ))

    # ------------------------------------------------------------------
    # ERROR is terminal until ManualReset
    # ------------------------------------------------------------------
    if state.turn_state is TurnState.ERROR:
        return _ignore(state, trigger, "error_terminal", context)

    target = _TARGETS.get(ttype)
    if target is None:
        return _ignore(state, trigger, "unhandled_trigger", context)

    # ------------------------------------------------------------------
    # Conditional transitions
    # ------------------------------------------------------------------
    if (
        ttype is TriggerType.SESSION_CONFIRMED
        and state.turn_state is not TurnState.LOADING
    ):
        return _drop_same_state(state, trigger, "not_loading", auto_idle_ms, context)

    if (
        ttype is TriggerType.AGENT_TURN_COMPLETE
        and state.turn_state is TurnState.APPU_SPEAKING
    ):
        return _drop_same_state(
            state, trigger, "agent_still_speaking", auto_idle_ms, context
        )

    if target is state.turn_state:
        return _drop_same_state(state, trigger, "same_state", auto_idle_ms, context)

    return _transition(state, trigger, target, "trigger", auto_idle_ms, context)
