"""
Book page / narration lifecycle enumeration.

Rules:
- This enum defines ONLY reading-session states.
- No behavior, no helper methods, no side effects.
- Transitions are owned exclusively by reading.session.ReadingSession.
"""

from __future__ import annotations

from enum import Enum


class BookState(str, Enum):
    """
    Where the current page and its narration are in their lifecycle.

    Stored independently of TurnState; the reading monitor couples them.
    """

    IDLE = "IDLE"
    PAGE_LOADING = "PAGE_LOADING"
    PAGE_LOADED = "PAGE_LOADED"
    AUDIO_READY_TO_PLAY = "AUDIO_READY_TO_PLAY"
    AUDIO_PLAYING = "AUDIO_PLAYING"
    AUDIO_PAUSED = "AUDIO_PAUSED"
    AUDIO_COMPLETED = "AUDIO_COMPLETED"
    PAGE_COMPLETED = "PAGE_COMPLETED"
    ERROR = "ERROR"
