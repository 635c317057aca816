"""
Turn-taking trigger definitions.

Rules:
- Triggers describe facts that have occurred (or explicit manual controls).
- Triggers carry data only (no behavior).
- All reducer decisions are based on these triggers.
- No clocks, no timers, no async, no side effects.

The vocabulary is closed: provider-specific events are mapped onto it by
orchestrator.translator before they reach the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Trigger Type Enumeration
# =============================================================================

class TriggerType(str, Enum):
    """
    Canonical trigger types understood by the reducer.

    Every (state, trigger_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_CONFIRMED = "SESSION_CONFIRMED"

    # ------------------------------------------------------------------
    # Agent output
    # ------------------------------------------------------------------
    AGENT_AUDIO_START = "AGENT_AUDIO_START"
    AGENT_AUDIO_STOP = "AGENT_AUDIO_STOP"
    AGENT_THINKING = "AGENT_THINKING"
    AGENT_TURN_COMPLETE = "AGENT_TURN_COMPLETE"

    # ------------------------------------------------------------------
    # User speech
    # ------------------------------------------------------------------
    USER_SPEECH_START = "USER_SPEECH_START"
    USER_SPEECH_STOP = "USER_SPEECH_STOP"

    # ------------------------------------------------------------------
    # Faults
    # ------------------------------------------------------------------
    FAULT = "FAULT"

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------
    MANUAL_RESET = "MANUAL_RESET"
    SET_ENABLED = "SET_ENABLED"

    # ------------------------------------------------------------------
    # Narration ownership (reading session)
    # ------------------------------------------------------------------
    NARRATION_STARTED = "NARRATION_STARTED"
    NARRATION_ENDED = "NARRATION_ENDED"

    # ------------------------------------------------------------------
    # Timers / internal
    # ------------------------------------------------------------------
    AUTO_IDLE = "AUTO_IDLE"


# =============================================================================
# Base Trigger
# =============================================================================

@dataclass(frozen=True)
class Trigger:
    """
    Base trigger type.

    All triggers must specify:
    - trigger_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    trigger_type: TriggerType
    ts_ms: int


# =============================================================================
# Session lifecycle
# =============================================================================

@dataclass(frozen=True)
class SessionCreated(Trigger):
    """Remote session exists; configuration not yet confirmed."""


@dataclass(frozen=True)
class SessionConfirmed(Trigger):
    """Remote service acknowledged our session configuration."""


# =============================================================================
# Agent output
# =============================================================================

@dataclass(frozen=True)
class AgentAudioStart(Trigger):
    """Agent audio output began."""


@dataclass(frozen=True)
class AgentAudioStop(Trigger):
    """Agent audio output buffer drained."""


@dataclass(frozen=True)
class AgentThinking(Trigger):
    """Agent is generating a response (or tool arguments)."""


@dataclass(frozen=True)
class AgentTurnComplete(Trigger):
    """Agent response finished generating."""


# =============================================================================
# User speech
# =============================================================================

@dataclass(frozen=True)
class UserSpeechStart(Trigger):
    """Server-side VAD detected the child speaking."""


@dataclass(frozen=True)
class UserSpeechStop(Trigger):
    """Server-side VAD detected the child stopped speaking."""


# =============================================================================
# Faults
# =============================================================================

@dataclass(frozen=True)
class Fault(Trigger):
    """
    Something went wrong (provider error, cancelled response, channel loss).

    Always accepted, even from ERROR, so every fault is observable.
    """
    reason: str


# =============================================================================
# Manual controls
# =============================================================================

@dataclass(frozen=True)
class ManualReset(Trigger):
    """Host explicitly returns the conversation to IDLE (exits ERROR)."""


@dataclass(frozen=True)
class SetEnabled(Trigger):
    """Host enables or disables turn-taking tracking."""
    enabled: bool


# =============================================================================
# Narration ownership
# =============================================================================

@dataclass(frozen=True)
class NarrationStarted(Trigger):
    """Book narration took ownership of audio output."""


@dataclass(frozen=True)
class NarrationEnded(Trigger):
    """Book narration released audio output."""


# =============================================================================
# Timers / internal
# =============================================================================

@dataclass(frozen=True)
class AutoIdle(Trigger):
    """
    Auto-idle watchdog expired.

    Carries the generation of the watchdog that armed it so a timer
    that raced with a newer trigger is ignored.
    """
    generation: int
