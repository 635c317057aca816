"""
getEyesTool handler: let the agent look through the camera.

Borrows one frame through a capture function supplied by the connection
orchestrator (which owns the camera), sends it for analysis and returns
the description as the tool result.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Protocol

from errors import MediaAccessError, ToolExecutionError
from observability.logger import log_event
from toolcalls.dispatcher import ToolOutcome
from constants import VISION_CAPTURE_ATTEMPTS, VISION_CAPTURE_SPACING_MS


NO_FRAME_REPLY = (
    "I can't see anything right now. Please make sure your camera is working "
    "and try showing me again!"
)
ANALYSIS_FAILED_REPLY = (
    "I'm having trouble seeing what you're showing me right now. Can you try again?"
)

FrameCapture = Callable[[], Awaitable[str | None]]


class VisionAnalyzer(Protocol):
    async def analyze_frame(self, frame_b64: str, context: str) -> str: ...


def _describe_request(arguments: str) -> str:
    try:
        args: Any = json.loads(arguments) if arguments else {}
    except ValueError:
        args = {}
    if not isinstance(args, dict):
        args = {}

    parts: list[str] = []
    if args.get("reason"):
        parts.append(f"Reason for looking: {args['reason']}")
    if args.get("lookingFor"):
        parts.append(f"Looking for: {args['lookingFor']}")
    if args.get("context"):
        parts.append(f"Conversation context: {args['context']}")
    return "\n".join(parts) or "The child wants to show something."


class VisionTool:
    """Tool handler for getEyesTool."""

    def __init__(
        self,
        *,
        capture_frame: FrameCapture,
        analyzer: VisionAnalyzer,
        attempts: int = VISION_CAPTURE_ATTEMPTS,
        spacing_ms: int = VISION_CAPTURE_SPACING_MS,
    ) -> None:
        self._capture_frame = capture_frame
        self._analyzer = analyzer
        self._attempts = attempts
        self._spacing_ms = spacing_ms

    async def handle(self, call_id: str, arguments: str) -> ToolOutcome:
        frame = await self._grab_frame(call_id)
        if frame is None:
            return ToolOutcome.error(NO_FRAME_REPLY)

        try:
            analysis = await self._analyzer.analyze_frame(frame, _describe_request(arguments))
        except ToolExecutionError as exc:
            log_event({
                "level": "ERROR",
                "event_type": "vision_analysis_failed",
                "call_id": call_id,
                "error": str(exc),
            })
            return ToolOutcome.error(ANALYSIS_FAILED_REPLY)

        log_event({
            "event_type": "vision_analysis_done",
            "call_id": call_id,
            "analysis_chars": len(analysis),
        })
        return ToolOutcome.ok(analysis)

    async def _grab_frame(self, call_id: str) -> str | None:
        for attempt in range(1, self._attempts + 1):
            try:
                frame = await self._capture_frame()
            except MediaAccessError as exc:
                log_event({
                    "level": "WARNING",
                    "event_type": "vision_camera_unavailable",
                    "call_id": call_id,
                    "error": str(exc),
                })
                return None

            if frame:
                return frame

            log_event({
                "level": "DEBUG",
                "event_type": "vision_frame_missing",
                "call_id": call_id,
                "attempt": attempt,
            })
            if attempt < self._attempts:
                await asyncio.sleep(self._spacing_ms / 1000.0)
        return None
