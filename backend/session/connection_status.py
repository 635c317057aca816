"""
Connection status tracking for the realtime session.

Connection lifecycle is tracked separately from the turn-taking machine:
connection_status: DOWN | CONNECTING | UP | FAILED

This is pure data owned by the ConnectionOrchestrator.
"""
from enum import Enum

class ConnectionStatus(str, Enum):
    """
    Connection lifecycle status.

    Separate from and independent of TurnState.
    IDLE can occur with any ConnectionStatus.
    """
    DOWN = "DOWN"              # Not connected (initial, or after disconnect)
    CONNECTING = "CONNECTING"  # connect() in progress (with retry delay)
    UP = "UP"                  # Control channel negotiated
    FAILED = "FAILED"          # Retries exhausted or authentication rejected
