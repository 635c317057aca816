"""
Conversation session container.

- One per connected call
- Owned and mutated exclusively by ConnectionOrchestrator
- Created on connect(), dropped on disconnect() or terminal failure
- NOT a state machine; contains no orchestration logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from orchestrator.enums.turn_state import TurnState
from orchestrator.machine import TurnTakingMachine
from session.connection_status import ConnectionStatus


@dataclass
class ConversationSession:
    """Mutable runtime container for a single realtime conversation."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    child_id: str
    turn_machine: TurnTakingMachine
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Connection / orchestrator-controlled state
    # ------------------------------------------------------------------

    connection_status: ConnectionStatus = ConnectionStatus.DOWN
    transport: Any = None  # Type: RealtimeTransport in practice
    channel_open: bool = False
    retry_count: int = 0
    last_error: str | None = None

    # True while the session is configured for short reading-mode replies
    reading_mode: bool = False

    @property
    def turn_state(self) -> TurnState:
        return self.turn_machine.state

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "connection_status": self.connection_status.value,
            "turn_state": self.turn_state.value,
        }
