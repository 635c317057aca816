"""
Event translator: provider lifecycle envelopes -> turn-taking triggers.

Rules:
- Stateless and pure: same envelope in, same trigger out.
- Every LIFECYCLE_TYPES tag has exactly one mapping here.
- Conditional semantics (e.g. "IDLE only if LOADING") belong to the
  reducer, not here.
"""

from __future__ import annotations

import time
from typing import Callable

from orchestrator.triggers import (
    AgentAudioStart,
    AgentAudioStop,
    AgentThinking,
    AgentTurnComplete,
    Fault,
    SessionConfirmed,
    SessionCreated,
    Trigger,
    TriggerType,
    UserSpeechStart,
    UserSpeechStop,
)
from protocol.envelopes import LIFECYCLE_TYPES, LifecycleEnvelope


_TriggerFactory = Callable[[LifecycleEnvelope, int], Trigger]


def _simple(cls: type[Trigger], trigger_type: TriggerType) -> _TriggerFactory:
    def _build(envelope: LifecycleEnvelope, ts_ms: int) -> Trigger:
        del envelope
        return cls(trigger_type=trigger_type, ts_ms=ts_ms)
    return _build


def _provider_error(envelope: LifecycleEnvelope, ts_ms: int) -> Trigger:
    return Fault(
        trigger_type=TriggerType.FAULT,
        ts_ms=ts_ms,
        reason=envelope.error_message or "Unknown provider error",
    )


def _response_cancelled(envelope: LifecycleEnvelope, ts_ms: int) -> Trigger:
    del envelope
    return Fault(
        trigger_type=TriggerType.FAULT,
        ts_ms=ts_ms,
        reason="Response was cancelled",
    )


_MAPPING: dict[str, _TriggerFactory] = {
    "session.created": _simple(SessionCreated, TriggerType.SESSION_CREATED),
    "session.updated": _simple(SessionConfirmed, TriggerType.SESSION_CONFIRMED),

    "output_audio_buffer.started": _simple(AgentAudioStart, TriggerType.AGENT_AUDIO_START),
    "response.audio.delta": _simple(AgentAudioStart, TriggerType.AGENT_AUDIO_START),
    "response.output_audio.delta": _simple(AgentAudioStart, TriggerType.AGENT_AUDIO_START),
    "output_audio_buffer.stopped": _simple(AgentAudioStop, TriggerType.AGENT_AUDIO_STOP),

    "input_audio_buffer.speech_started": _simple(UserSpeechStart, TriggerType.USER_SPEECH_START),
    "input_audio_buffer.speech_stopped": _simple(UserSpeechStop, TriggerType.USER_SPEECH_STOP),

    "response.created": _simple(AgentThinking, TriggerType.AGENT_THINKING),
    "response.function_call_arguments.delta": _simple(AgentThinking, TriggerType.AGENT_THINKING),
    "response.done": _simple(AgentTurnComplete, TriggerType.AGENT_TURN_COMPLETE),

    "error": _provider_error,
    "response.cancelled": _response_cancelled,
}

if set(_MAPPING) != LIFECYCLE_TYPES:
    raise RuntimeError(
        "translator mapping out of sync with lifecycle tags: "
        f"{sorted(set(_MAPPING) ^ LIFECYCLE_TYPES)}"
    )


class EventTranslator:
    """Maps lifecycle envelopes onto the closed trigger vocabulary."""

    def translate(
        self,
        envelope: LifecycleEnvelope,
        ts_ms: int | None = None,
    ) -> Trigger | None:
        """Return the trigger for envelope, or None for an unmapped tag."""
        factory = _MAPPING.get(envelope.type)
        if factory is None:
            return None
        if ts_ms is None:
            ts_ms = time.time_ns() // 1_000_000
        return factory(envelope, ts_ms)
