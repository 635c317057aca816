# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

from errors import MediaAccessError, VisionError
from toolcalls.vision import ANALYSIS_FAILED_REPLY, NO_FRAME_REPLY, VisionTool


class FakeCamera:
    def __init__(self, frames: list[str | None] | None = None, *, error: bool = False) -> None:
        self.frames = list(frames or [])
        self.error = error
        self.calls = 0

    async def capture(self) -> str | None:
        self.calls += 1
        if self.error:
            raise MediaAccessError("not connected")
        return self.frames.pop(0) if self.frames else None


class FakeAnalyzer:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[tuple[str, str]] = []

    async def analyze_frame(self, frame_b64: str, context: str) -> str:
        self.requests.append((frame_b64, context))
        if self.fail:
            raise VisionError("model unavailable")
        return "A red toy truck!"


def _tool(camera: FakeCamera, analyzer: FakeAnalyzer) -> VisionTool:
    return VisionTool(
        capture_frame=camera.capture,
        analyzer=analyzer,
        attempts=3,
        spacing_ms=1,
    )


def test_retries_until_a_frame_arrives():
    camera = FakeCamera([None, "", "ZnJhbWU="])
    analyzer = FakeAnalyzer()
    arguments = json.dumps({"reason": "show and tell", "lookingFor": "a truck"})

    outcome = asyncio.run(_tool(camera, analyzer).handle("c1", arguments))

    assert not outcome.is_error
    assert outcome.output == "A red toy truck!"
    assert camera.calls == 3
    frame, context = analyzer.requests[0]
    assert frame == "ZnJhbWU="
    assert context == "Reason for looking: show and tell\nLooking for: a truck"


def test_no_frame_after_all_attempts():
    camera = FakeCamera([None, None, None, "late"])
    analyzer = FakeAnalyzer()

    outcome = asyncio.run(_tool(camera, analyzer).handle("c1", "{}"))

    assert outcome.is_error
    assert outcome.output == NO_FRAME_REPLY
    assert camera.calls == 3
    assert not analyzer.requests


def test_camera_unavailable_is_not_retried():
    camera = FakeCamera(error=True)

    outcome = asyncio.run(_tool(camera, FakeAnalyzer()).handle("c1", "{}"))

    assert outcome.output == NO_FRAME_REPLY
    assert camera.calls == 1


def test_analysis_failure_becomes_apology():
    outcome = asyncio.run(
        _tool(FakeCamera(["ZnJhbWU="]), FakeAnalyzer(fail=True)).handle("c1", "not json")
    )

    assert outcome.is_error
    assert outcome.output == ANALYSIS_FAILED_REPLY


def test_default_context_when_no_arguments():
    analyzer = FakeAnalyzer()

    asyncio.run(_tool(FakeCamera(["ZnJhbWU="]), analyzer).handle("c1", ""))

    assert analyzer.requests[0][1] == "The child wants to show something."
