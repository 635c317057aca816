"""
Authoritative turn-taking state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass

from orchestrator.enums.turn_state import TurnState


@dataclass(frozen=True)
class TurnTakingState:
    """Immutable snapshot of all turn-taking state."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    turn_state: TurnState = TurnState.IDLE
    enabled: bool = True

    # ------------------------------------------------------------------
    # Audio output ownership
    # ------------------------------------------------------------------
    # True while book narration is playing. Never changes turn_state.
    narration_active: bool = False

    # ------------------------------------------------------------------
    # Auto-idle watchdog
    # ------------------------------------------------------------------
    # Bumped every time the watchdog is (re)armed; AutoIdle triggers
    # carrying an older generation are stale.
    watchdog_generation: int = 0
    watchdog_armed: bool = False

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
    fault_count: int = 0
