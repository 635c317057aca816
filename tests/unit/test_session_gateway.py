# pylint: disable=missing-module-docstring,missing-function-docstring,protected-access
"""
SessionGateway: UI protocol over fully injected collaborators.

Guarantees under test:
- SESSION_INIT is the first message on a new UI connection
- UI commands reach the orchestrator / turn machine / reading session
- Tool calls from the realtime channel surface as UI messages
- Agent audio is framed in order; invalid PCM is never queued
- Malformed UI frames are dropped without raising
- on_ws_disconnect is idempotent and silences the outbox
"""

import asyncio
import json
from typing import Any, Mapping

from adapters.credentials import SessionProvider
from adapters.media import MediaCapture
from adapters.transport.base import RealtimeTransport
from config import AppConfig
from errors import AuthenticationFailedError, ChannelError
from orchestrator.enums.turn_state import TurnState
from orchestrator.triggers import Fault, TriggerType
from protocol.binary import decode_agent_audio_frame
from reading.models import BookSummary, PageData
from session.gateway import SessionGateway


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeProvider(SessionProvider):
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def create_session(self, child_id: str) -> str:
        if self.error is not None:
            raise self.error
        return "ek_test"


class FakeMedia(MediaCapture):
    async def acquire_audio(self) -> Any:
        return "mic-track"

    async def capture_frame(self) -> str | None:
        return "ZnJhbWU="

    async def release(self) -> None:
        pass


class FakeTransport(RealtimeTransport):
    def __init__(self) -> None:
        super().__init__()
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open_channel(self) -> None:
        pass

    def attach_audio(self, track: Any) -> None:
        pass

    async def negotiate(self, token: str) -> None:
        self._open = True
        self._fire(self._on_open)

    async def send(self, envelope: Mapping[str, Any]) -> None:
        if not self._open:
            raise ChannelError("closed")
        self.sent.append(dict(envelope))

    async def close(self) -> None:
        self.closed = True
        self._open = False

    def deliver(self, message: Mapping[str, Any]) -> None:
        self._fire(self._on_message, json.dumps(message))


class FakeCatalog:
    async def search(self, query: str) -> list[BookSummary]:
        return [BookSummary(id="b1", title="Moon Bunny", page_count=3, summary="A bunny.")]

    async def fetch_page(self, book_id: str, page_number: int) -> PageData:
        return PageData(
            book_id=book_id,
            page_number=page_number,
            total_pages=3,
            book_title="Moon Bunny",
            text="Hop.",
            audio_url=f"http://audio/{page_number}.mp3",
        )


class FakeAnalyzer:
    async def analyze_frame(self, frame_b64: str, context: str) -> str:
        return "a teddy bear"


class Harness:
    def __init__(self, *, provider: FakeProvider | None = None) -> None:
        self.transports: list[FakeTransport] = []
        self.gateway = SessionGateway(
            config=AppConfig(page_complete_delay_ms=0),
            session_provider=provider or FakeProvider(),
            transport_factory=self._new_transport,
            media=FakeMedia(),
            catalog=FakeCatalog(),
            vision_analyzer=FakeAnalyzer(),
            retry_delay_ms=0,
        )

    def _new_transport(self) -> FakeTransport:
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    async def send_ui(self, message: Any) -> None:
        await self.gateway.on_json_message(json.dumps(message))

    async def drain(self) -> list[tuple[str, Any]]:
        items: list[tuple[str, Any]] = []
        while True:
            try:
                items.append(
                    await asyncio.wait_for(self.gateway.next_outbound(), timeout=0.05)
                )
            except asyncio.TimeoutError:
                return items

    async def drain_json(self) -> list[dict[str, Any]]:
        return [payload for kind, payload in await self.drain() if kind == "json"]


def _types(messages: list[dict[str, Any]]) -> list[str]:
    return [m["type"] for m in messages]


def _tool_call(call_id: str, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "response.function_call_arguments.done",
        "call_id": call_id,
        "name": name,
        "arguments": json.dumps(arguments),
    }


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_session_init_is_first_message():
    async def scenario() -> list[dict[str, Any]]:
        h = Harness()
        await h.gateway.on_ws_connect()
        messages = await h.drain_json()
        await h.gateway.on_ws_disconnect("test")
        return messages

    messages = asyncio.run(scenario())

    init = messages[0]
    assert init["type"] == "SESSION_INIT"
    assert init["gatewayId"].startswith("gw_")
    assert init["turnState"] == "IDLE"
    assert init["connectionStatus"] == "DOWN"
    assert init["audioFormat"]["sample_rate"] == 24000
    assert isinstance(init["ts_ms"], int)


def test_connect_command_reports_status():
    async def scenario():
        h = Harness()
        await h.send_ui({"type": "CONNECT", "childId": 4})
        messages = await h.drain_json()
        session = h.gateway.orchestrator.session
        child_id = session.child_id if session is not None else None
        await h.send_ui({"type": "DISCONNECT"})
        after = await h.drain_json()
        await h.gateway.on_ws_disconnect()
        return h, messages, after, child_id

    h, messages, after, child_id = asyncio.run(scenario())

    statuses = [m["status"] for m in messages if m["type"] == "CONNECTION_STATUS"]
    assert statuses == ["CONNECTING", "UP"]
    assert child_id == "4"
    assert h.transports[0].sent[0]["type"] == "session.update"
    assert [m["status"] for m in after if m["type"] == "CONNECTION_STATUS"] == ["DOWN"]
    assert h.transports[0].closed


def test_connect_failure_surfaces_error():
    async def scenario() -> list[dict[str, Any]]:
        h = Harness(provider=FakeProvider(AuthenticationFailedError("401")))
        await h.send_ui({"type": "CONNECT"})
        messages = await h.drain_json()
        await h.gateway.on_ws_disconnect()
        return messages

    messages = asyncio.run(scenario())

    errors = [m for m in messages if m["type"] == "ERROR"]
    assert len(errors) == 1
    assert errors[0]["callId"] is None
    assert errors[0]["message"].startswith("Authentication failed")
    statuses = [m["status"] for m in messages if m["type"] == "CONNECTION_STATUS"]
    assert statuses == ["CONNECTING", "FAILED"]


def test_reading_flow_reaches_the_ui():
    async def scenario():
        h = Harness()
        await h.send_ui({"type": "CONNECT"})
        await h.drain()

        h.transport.deliver(_tool_call("c1", "bookSearchTool", {"query": "bunny"}))
        search = await h.drain_json()

        h.transport.deliver(
            _tool_call("c2", "display_book_page", {"bookId": "b1", "pageNumber": 1})
        )
        display = await h.drain_json()

        await h.send_ui({"type": "NARRATION_EVENT", "clipId": 1, "event": "play"})
        playing = await h.drain_json()

        await h.send_ui({"type": "NARRATION_EVENT", "clipId": 99, "event": "ended"})
        stale = await h.drain_json()

        sent = list(h.transport.sent)
        await h.gateway.on_ws_disconnect()
        return search, display, playing, stale, sent

    search, display, playing, stale, sent = asyncio.run(scenario())

    result = next(m for m in search if m["type"] == "TOOL_RESULT")
    assert result["callId"] == "c1"
    assert json.loads(result["output"]) == {
        "title": "Moon Bunny",
        "summary": "A bunny.",
        "id": "b1",
        "totalPages": 3,
    }

    types = _types(display)
    for expected in (
        "READING_MODE",
        "PAGE_DISPLAY",
        "NARRATION_LOAD",
        "NARRATION_PLAY",
        "TOOL_RESULT",
    ):
        assert expected in types
    assert types.index("NARRATION_LOAD") < types.index("NARRATION_PLAY")
    page = next(m for m in display if m["type"] == "PAGE_DISPLAY")["page"]
    assert page["pageNumber"] == 1
    assert page["audioUrl"] == "http://audio/1.mp3"
    book_states = [m["state"] for m in display if m["type"] == "BOOK_STATE"]
    assert book_states[-1] == "AUDIO_PLAYING"

    assert {"type": "NARRATION_STATE", "active": True}.items() <= playing[0].items()
    assert not stale

    reading_updates = [
        m for m in sent
        if m["type"] == "session.update" and "tools" not in m["session"]
    ]
    assert reading_updates[0]["session"]["max_response_output_tokens"] == 250


def test_reset_command_clears_error():
    async def scenario() -> list[dict[str, Any]]:
        h = Harness()
        h.gateway.turn.apply_trigger(
            Fault(trigger_type=TriggerType.FAULT, ts_ms=1, reason="test")
        )
        await h.send_ui({"type": "RESET"})
        messages = await h.drain_json()
        assert h.gateway.turn.state is TurnState.IDLE
        await h.gateway.on_ws_disconnect()
        return messages

    messages = asyncio.run(scenario())

    assert [m["state"] for m in messages if m["type"] == "TURN_STATE"] == ["ERROR", "IDLE"]


def test_malformed_and_unknown_ui_messages_are_dropped():
    async def scenario() -> list[dict[str, Any]]:
        h = Harness()
        await h.gateway.on_json_message("{not json")
        await h.gateway.on_json_message("[1, 2]")
        await h.gateway.on_json_message('{"type": 5}')
        await h.send_ui({"type": "DANCE"})
        messages = await h.drain_json()
        await h.gateway.on_ws_disconnect()
        return messages

    assert asyncio.run(scenario()) == []


def test_navigation_without_book_reports_error():
    async def scenario() -> list[dict[str, Any]]:
        h = Harness()
        await h.send_ui({"type": "NEXT_PAGE"})
        messages = await h.drain_json()
        await h.gateway.on_ws_disconnect()
        return messages

    messages = asyncio.run(scenario())

    assert _types(messages) == ["ERROR"]
    assert messages[0]["callId"] is None


def test_agent_audio_is_framed_in_order():
    async def scenario() -> list[tuple[str, Any]]:
        h = Harness()
        h.gateway._on_agent_audio(b"\x01\x00" * 4)
        h.gateway._on_agent_audio(b"\x01")  # half a sample
        h.gateway._on_agent_audio(b"\x02\x00" * 4)
        items = await h.drain()
        await h.gateway.on_ws_disconnect()
        return items

    items = asyncio.run(scenario())

    assert [kind for kind, _ in items] == ["binary", "binary"]
    frames = [decode_agent_audio_frame(payload) for _, payload in items]
    assert [f.sequence_num for f in frames] == [1, 2]
    assert frames[1].pcm_bytes == b"\x02\x00" * 4


def test_disconnect_is_idempotent_and_silences_outbox():
    async def scenario():
        h = Harness()
        await h.send_ui({"type": "CONNECT"})
        await h.drain()
        await h.gateway.on_ws_disconnect("client_disconnect")
        await h.gateway.on_ws_disconnect("again")
        h.gateway._on_agent_audio(b"\x00\x00")
        h.gateway._push_json({"type": "TURN_STATE", "state": "IDLE"})
        leftover = await h.drain()
        return h, leftover

    h, leftover = asyncio.run(scenario())

    assert h.transports[0].closed
    assert h.gateway.orchestrator.session is None
    assert leftover == []
