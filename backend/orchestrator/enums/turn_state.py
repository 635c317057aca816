"""
Conversational turn-taking state enumeration.

Rules:
- This enum defines ONLY the turn-taking states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class TurnState(str, Enum):
    """
    Who holds the floor in the conversation right now.

    These states represent conversational turns, NOT connection status
    and NOT book narration playback.
    """

    LOADING = "LOADING"
    APPU_SPEAKING = "APPU_SPEAKING"
    APPU_THINKING = "APPU_THINKING"
    CHILD_SPEAKING = "CHILD_SPEAKING"
    APPU_SPEAKING_STOPPED = "APPU_SPEAKING_STOPPED"
    CHILD_SPEAKING_STOPPED = "CHILD_SPEAKING_STOPPED"
    IDLE = "IDLE"
    ERROR = "ERROR"
