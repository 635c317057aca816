"""
Narration player contract.

The player is the "audio element" that plays a page's narration. It is
exclusively owned by ReadingSession; nothing else calls it.

Players report what actually happened back through the callback given to
bind(): "play", "pause", "ended" or "error".
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Protocol

from observability.logger import log_event


class NarrationEvent(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    ENDED = "ended"
    ERROR = "error"


NarrationEventSink = Callable[[NarrationEvent | str], None]


class NarrationPlayer(Protocol):
    """Anything that can play one narration clip at a time."""

    def bind(self, sink: NarrationEventSink) -> None:
        """Register where playback events are reported."""

    def load(self, url: str) -> None:
        """Replace the current clip. Does not start playback."""

    def play(self) -> None:
        """Start or resume playback of the loaded clip."""

    def pause(self) -> None: ...

    def stop(self) -> None:
        """Stop and unload. No events are reported afterwards."""


# ---------------------------------------------------------------------
# Host-UI player
# ---------------------------------------------------------------------

UiSender = Callable[[dict[str, Any]], None]


class RemoteNarrationPlayer:
    """
    NarrationPlayer whose audio element lives in the host UI.

    Commands go out as NARRATION_* messages carrying a clip id; the UI
    answers with NARRATION_EVENT {clipId, event}. Events for any clip other
    than the loaded one (or after stop) are dropped.
    """

    def __init__(self, send: UiSender) -> None:
        self._send = send
        self._sink: NarrationEventSink | None = None
        self._clip_seq = 0
        self._clip_id: int | None = None

    @property
    def clip_id(self) -> int | None:
        return self._clip_id

    def bind(self, sink: NarrationEventSink) -> None:
        self._sink = sink

    def load(self, url: str) -> None:
        self._clip_seq += 1
        self._clip_id = self._clip_seq
        self._send({"type": "NARRATION_LOAD", "clipId": self._clip_id, "url": url})

    def play(self) -> None:
        if self._clip_id is not None:
            self._send({"type": "NARRATION_PLAY", "clipId": self._clip_id})

    def pause(self) -> None:
        if self._clip_id is not None:
            self._send({"type": "NARRATION_PAUSE", "clipId": self._clip_id})

    def stop(self) -> None:
        if self._clip_id is None:
            return
        clip_id = self._clip_id
        self._clip_id = None
        self._send({"type": "NARRATION_STOP", "clipId": clip_id})

    def report(self, clip_id: Any, event: str) -> bool:
        """UI playback report. Returns False when it was stale and dropped."""
        if self._sink is None or self._clip_id is None or clip_id != self._clip_id:
            log_event({
                "level": "DEBUG",
                "event_type": "narration_event_stale",
                "clip_id": clip_id,
                "current_clip_id": self._clip_id,
                "narration_event": event,
            })
            return False
        self._sink(event)
        return True
