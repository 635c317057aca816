# pylint: disable=missing-module-docstring,missing-function-docstring
"""
Turn-taking reducer semantics.

Reducer-only guarantees:
- Transition table and conditional transitions
- Idempotence (Fault is the only re-firing trigger)
- ERROR is terminal until ManualReset
- Watchdog generations gate stale AutoIdle
- Disabled machine ignores everything but reset / enable
"""

from dataclasses import replace

from orchestrator.commands import (
    CancelTimer,
    LogEvent,
    NotifyNarration,
    NotifyStateChange,
    StartTimer,
)
from orchestrator.enums.turn_state import TurnState
from orchestrator.reducer import TIMER_AUTO_IDLE, reduce
from orchestrator.state_dataclass import TurnTakingState
from orchestrator.triggers import (
    AgentAudioStart,
    AgentAudioStop,
    AgentThinking,
    AgentTurnComplete,
    AutoIdle,
    Fault,
    ManualReset,
    NarrationStarted,
    SessionConfirmed,
    SessionCreated,
    SetEnabled,
    TriggerType,
    UserSpeechStart,
    UserSpeechStop,
)


def _state(turn_state: TurnState = TurnState.IDLE, **kw) -> TurnTakingState:
    return replace(TurnTakingState(), turn_state=turn_state, **kw)


def _decisions(cmds) -> list[str]:
    return [c.event["decision"] for c in cmds if isinstance(c, LogEvent)]


def _notifications(cmds) -> list[NotifyStateChange]:
    return [c for c in cmds if isinstance(c, NotifyStateChange)]


# ---------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------

def test_session_created_enters_loading_and_arms_watchdog():
    new_state, cmds = reduce(
        _state(), SessionCreated(trigger_type=TriggerType.SESSION_CREATED, ts_ms=1)
    )

    assert new_state.turn_state is TurnState.LOADING
    assert new_state.watchdog_armed
    starts = [c for c in cmds if isinstance(c, StartTimer)]
    assert len(starts) == 1
    assert starts[0].timer_id == TIMER_AUTO_IDLE
    assert starts[0].generation == new_state.watchdog_generation
    assert _notifications(cmds)[0].current is TurnState.LOADING


def test_session_confirmed_only_from_loading():
    loading = _state(TurnState.LOADING)
    new_state, _ = reduce(
        loading, SessionConfirmed(trigger_type=TriggerType.SESSION_CONFIRMED, ts_ms=1)
    )
    assert new_state.turn_state is TurnState.IDLE

    speaking = _state(TurnState.APPU_SPEAKING)
    new_state, cmds = reduce(
        speaking, SessionConfirmed(trigger_type=TriggerType.SESSION_CONFIRMED, ts_ms=1)
    )
    assert new_state.turn_state is TurnState.APPU_SPEAKING
    assert not _notifications(cmds)


def test_turn_complete_while_speaking_is_dropped():
    speaking = _state(TurnState.APPU_SPEAKING)

    new_state, cmds = reduce(
        speaking, AgentTurnComplete(trigger_type=TriggerType.AGENT_TURN_COMPLETE, ts_ms=1)
    )

    assert new_state.turn_state is TurnState.APPU_SPEAKING
    assert not _notifications(cmds)
    # still counts as provider activity mid-turn
    assert any(isinstance(c, StartTimer) for c in cmds)


def test_full_agent_turn_sequence():
    state = _state()
    triggers = [
        UserSpeechStart(trigger_type=TriggerType.USER_SPEECH_START, ts_ms=1),
        UserSpeechStop(trigger_type=TriggerType.USER_SPEECH_STOP, ts_ms=2),
        AgentThinking(trigger_type=TriggerType.AGENT_THINKING, ts_ms=3),
        AgentAudioStart(trigger_type=TriggerType.AGENT_AUDIO_START, ts_ms=4),
        AgentAudioStop(trigger_type=TriggerType.AGENT_AUDIO_STOP, ts_ms=5),
        AgentTurnComplete(trigger_type=TriggerType.AGENT_TURN_COMPLETE, ts_ms=6),
    ]
    seen = []
    for trigger in triggers:
        state, _ = reduce(state, trigger)
        seen.append(state.turn_state)

    assert seen == [
        TurnState.CHILD_SPEAKING,
        TurnState.CHILD_SPEAKING_STOPPED,
        TurnState.APPU_THINKING,
        TurnState.APPU_SPEAKING,
        TurnState.APPU_SPEAKING_STOPPED,
        TurnState.IDLE,
    ]
    assert not state.watchdog_armed


def test_entering_idle_cancels_watchdog():
    thinking, _ = reduce(
        _state(), AgentThinking(trigger_type=TriggerType.AGENT_THINKING, ts_ms=1)
    )

    idle, cmds = reduce(
        thinking, AgentTurnComplete(trigger_type=TriggerType.AGENT_TURN_COMPLETE, ts_ms=2)
    )

    assert idle.turn_state is TurnState.IDLE
    assert any(isinstance(c, CancelTimer) and c.timer_id == TIMER_AUTO_IDLE for c in cmds)


# ---------------------------------------------------------------------
# Idempotence
# ---------------------------------------------------------------------

def test_repeated_trigger_is_a_noop():
    speaking, _ = reduce(
        _state(), AgentAudioStart(trigger_type=TriggerType.AGENT_AUDIO_START, ts_ms=1)
    )

    again, cmds = reduce(
        speaking, AgentAudioStart(trigger_type=TriggerType.AGENT_AUDIO_START, ts_ms=2)
    )

    assert again.turn_state is TurnState.APPU_SPEAKING
    assert not _notifications(cmds)
    assert "ignore" in _decisions(cmds)


def test_repeated_idle_trigger_emits_only_a_debug_log():
    state = _state()

    new_state, cmds = reduce(
        state, AgentTurnComplete(trigger_type=TriggerType.AGENT_TURN_COMPLETE, ts_ms=1)
    )

    assert new_state == state
    assert len(cmds) == 1
    assert isinstance(cmds[0], LogEvent)
    assert cmds[0].event["level"] == "DEBUG"


def test_fault_renotifies_every_time():
    state = _state(TurnState.APPU_SPEAKING)

    first, cmds1 = reduce(state, Fault(trigger_type=TriggerType.FAULT, ts_ms=1, reason="a"))
    second, cmds2 = reduce(first, Fault(trigger_type=TriggerType.FAULT, ts_ms=2, reason="b"))

    assert first.turn_state is TurnState.ERROR
    assert second.turn_state is TurnState.ERROR
    assert second.last_error == "b"
    assert second.fault_count == 2
    assert len(_notifications(cmds1)) == 1
    assert len(_notifications(cmds2)) == 1
    assert _notifications(cmds2)[0].previous is TurnState.ERROR


# ---------------------------------------------------------------------
# ERROR handling
# ---------------------------------------------------------------------

def test_error_ignores_lifecycle_triggers():
    errored = _state(TurnState.ERROR, last_error="boom")

    new_state, cmds = reduce(
        errored, UserSpeechStart(trigger_type=TriggerType.USER_SPEECH_START, ts_ms=1)
    )

    assert new_state == errored
    assert _decisions(cmds) == ["ignore"]


def test_manual_reset_exits_error():
    errored = _state(TurnState.ERROR, last_error="boom")

    new_state, cmds = reduce(
        errored, ManualReset(trigger_type=TriggerType.MANUAL_RESET, ts_ms=1)
    )

    assert new_state.turn_state is TurnState.IDLE
    assert new_state.last_error is None
    assert _notifications(cmds)[0].current is TurnState.IDLE


def test_manual_reset_when_idle_is_ignored():
    new_state, cmds = reduce(
        _state(), ManualReset(trigger_type=TriggerType.MANUAL_RESET, ts_ms=1)
    )

    assert new_state.turn_state is TurnState.IDLE
    assert not _notifications(cmds)


# ---------------------------------------------------------------------
# Watchdog
# ---------------------------------------------------------------------

def test_stale_auto_idle_is_ignored():
    state = _state(TurnState.APPU_THINKING, watchdog_generation=3, watchdog_armed=True)

    new_state, cmds = reduce(
        state, AutoIdle(trigger_type=TriggerType.AUTO_IDLE, ts_ms=1, generation=2)
    )

    assert new_state == state
    assert _decisions(cmds) == ["ignore"]


def test_current_auto_idle_forces_idle():
    state = _state(TurnState.APPU_THINKING, watchdog_generation=3, watchdog_armed=True)

    new_state, cmds = reduce(
        state, AutoIdle(trigger_type=TriggerType.AUTO_IDLE, ts_ms=1, generation=3)
    )

    assert new_state.turn_state is TurnState.IDLE
    assert not new_state.watchdog_armed
    assert "auto_idle_fired" in _decisions(cmds)


def test_duplicate_trigger_mid_turn_restarts_watchdog():
    state = _state(TurnState.CHILD_SPEAKING, watchdog_generation=5, watchdog_armed=True)

    new_state, cmds = reduce(
        state, UserSpeechStart(trigger_type=TriggerType.USER_SPEECH_START, ts_ms=1)
    )

    assert new_state.watchdog_generation == 6
    starts = [c for c in cmds if isinstance(c, StartTimer)]
    assert starts and starts[0].generation == 6


# ---------------------------------------------------------------------
# Enable / narration / malformed
# ---------------------------------------------------------------------

def test_disabled_machine_ignores_triggers():
    disabled, _ = reduce(
        _state(), SetEnabled(trigger_type=TriggerType.SET_ENABLED, ts_ms=1, enabled=False)
    )

    new_state, cmds = reduce(
        disabled, AgentAudioStart(trigger_type=TriggerType.AGENT_AUDIO_START, ts_ms=2)
    )

    assert not disabled.enabled
    assert new_state.turn_state is TurnState.IDLE
    assert _decisions(cmds) == ["ignore"]


def test_disabling_mid_turn_returns_to_idle():
    state = _state(TurnState.APPU_SPEAKING, watchdog_generation=1, watchdog_armed=True)

    new_state, cmds = reduce(
        state, SetEnabled(trigger_type=TriggerType.SET_ENABLED, ts_ms=1, enabled=False)
    )

    assert new_state.turn_state is TurnState.IDLE
    assert not new_state.enabled
    assert any(isinstance(c, CancelTimer) for c in cmds)


def test_narration_never_changes_turn_state():
    new_state, cmds = reduce(
        _state(), NarrationStarted(trigger_type=TriggerType.NARRATION_STARTED, ts_ms=1)
    )

    assert new_state.turn_state is TurnState.IDLE
    assert new_state.narration_active
    assert [c.active for c in cmds if isinstance(c, NotifyNarration)] == [True]
    assert not _notifications(cmds)


def test_malformed_trigger_is_logged_not_raised():
    state = _state()

    new_state, cmds = reduce(state, object())  # type: ignore[arg-type]

    assert new_state == state
    assert cmds[0].event["event_type"] == "MALFORMED_TRIGGER"


def test_state_change_log_is_emitted_last():
    _, cmds = reduce(
        _state(), AgentThinking(trigger_type=TriggerType.AGENT_THINKING, ts_ms=1)
    )

    assert isinstance(cmds[-1], LogEvent)
    assert cmds[-1].event["decision"] == "state_changed"
    assert cmds[-1].event["details"]["to_state"] == "APPU_THINKING"
