"""
Side-effect command definitions for the turn-taking machine.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the machine runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from orchestrator.enums.turn_state import TurnState
from orchestrator.triggers import TriggerType


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Subscribers
    NOTIFY_STATE_CHANGE = "NOTIFY_STATE_CHANGE"
    NOTIFY_NARRATION = "NOTIFY_NARRATION"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Subscriber Commands
# =============================================================================

@dataclass(frozen=True)
class NotifyStateChange(Command):
    """
    Tell subscribers the turn state changed (or a Fault re-fired).

    previous == current only for repeated faults.
    """
    previous: TurnState
    current: TurnState
    command_type: CommandType = CommandType.NOTIFY_STATE_CHANGE


@dataclass(frozen=True)
class NotifyNarration(Command):
    """Tell subscribers narration took or released audio output."""
    active: bool
    command_type: CommandType = CommandType.NOTIFY_NARRATION


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start (or restart) a named timer.

    On expiration, the runtime must inject the specified timeout trigger
    carrying `generation` for stale gating.
    """
    timer_id: str
    duration_ms: int
    timeout_trigger_type: TriggerType
    generation: int = 0
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
