"""
Session gateway.

Responsibilities:
- One gateway == one host UI WebSocket == one conversation
- Build and own the conversation's collaborators:
    TurnTakingMachine, ConnectionOrchestrator, ReadingSession, VisionTool
- Register the tool handlers with the orchestrator's dispatcher
- Route inbound UI JSON commands -> orchestrator / reading session
- Queue outbound UI messages (JSON + binary agent audio); the route drains
  them with next_outbound()

NOT responsible for:
- Any turn-taking transition logic (reducer)
- Transport, credentials or media handling (adapters)
- Retry policy (orchestrator.retry)

UI -> gateway commands ({"type": ...}):
    CONNECT            {childId?}
    DISCONNECT
    RESET
    NEXT_PAGE / PREVIOUS_PAGE / EXIT_READING
    NARRATION_EVENT    {clipId, event}

gateway -> UI messages:
    SESSION_INIT, CONNECTION_STATUS, TURN_STATE, NARRATION_STATE,
    BOOK_STATE, PAGE_DISPLAY, READING_MODE, TOOL_RESULT, TRANSCRIPT,
    ERROR, NARRATION_LOAD / PLAY / PAUSE / STOP
    binary: agent audio (protocol.binary)
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, Literal, TYPE_CHECKING

from uuid import uuid4

from adapters.catalog import HttpBookCatalog
from adapters.credentials import (
    BackendSessionProvider,
    OpenAISessionProvider,
    SessionProvider,
)
from adapters.media import DeviceMediaCapture, MediaCapture
from adapters.transport.base import RealtimeTransport
from adapters.transport.webrtc import WebRTCTransport
from adapters.transport.websocket import WebSocketTransport
from adapters.vision import OpenAIVisionAnalyzer
from errors import FatalSessionError
from observability.logger import log_event, preview
from orchestrator.enums.turn_state import TurnState
from orchestrator.machine import TurnTakingMachine
from protocol.binary import BinaryProtocolError, encode_agent_audio_frame, next_seq
from reading.enums.book_state import BookState
from reading.models import PageData
from reading.narration import RemoteNarrationPlayer
from reading.session import BookCatalog, ReadingSession
from session.connection import ConnectionOrchestrator
from session.connection_status import ConnectionStatus
from session.session_config import (
    TOOL_BOOK_SEARCH,
    TOOL_DISPLAY_PAGE,
    TOOL_GET_EYES,
)
from toolcalls.vision import VisionAnalyzer, VisionTool
from constants import (
    REALTIME_AUDIO_FORMAT,
    REALTIME_CHANNELS,
    REALTIME_SAMPLE_RATE_HZ,
)

if TYPE_CHECKING:
    import httpx

    from config import AppConfig


OutboundKind = Literal["json", "binary"]
Outbound = tuple[OutboundKind, Any]

# Agent audio is the only thing allowed to back up; drop beyond this.
_MAX_PENDING_AUDIO_FRAMES = 500


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_gateway_id() -> str:
    return f"gw_{uuid4().hex[:12]}"


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """
    One gateway per UI connection.

    Every collaborator can be injected; anything not injected is built
    from AppConfig.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        openai_client: Any | None = None,  # Type: openai.AsyncOpenAI
        http_client: httpx.AsyncClient | None = None,
        session_provider: SessionProvider | None = None,
        transport_factory: Callable[[], RealtimeTransport] | None = None,
        media: MediaCapture | None = None,
        catalog: BookCatalog | None = None,
        vision_analyzer: VisionAnalyzer | None = None,
        retry_delay_ms: int | None = None,
    ) -> None:
        self._config = config
        self._openai_client = openai_client
        self._http = http_client
        self.gateway_id = _new_gateway_id()

        self._outbox: asyncio.Queue[Outbound] = asyncio.Queue()
        self._audio_seq = 0
        self._pending_audio = 0
        self._connect_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

        self.turn = TurnTakingMachine(auto_idle_ms=config.auto_idle_ms)

        self.orchestrator = ConnectionOrchestrator(
            session_provider=session_provider or self._build_session_provider(),
            transport_factory=transport_factory or self._build_transport,
            media=media or self._build_media(),
            turn_machine=self.turn,
            child_id=config.child_id,
            voice=config.realtime_voice,
            retry_delay_ms=retry_delay_ms,
            on_error=self._on_error,
            on_function_result=self._on_function_result,
            on_transcript=self._on_transcript,
            on_status_change=self._on_status_change,
        )

        self.player = RemoteNarrationPlayer(self._push_json)
        self.reading = ReadingSession(
            catalog=catalog or self._build_catalog(),
            player=self.player,
            turn_machine=self.turn,
            page_complete_delay_ms=config.page_complete_delay_ms,
            on_page_display=self._on_page_display,
            on_book_state_change=self._on_book_state_change,
            on_reading_mode_change=self._on_reading_mode_change,
            on_error=self._on_error,
        )

        self.vision = VisionTool(
            capture_frame=self.orchestrator.capture_frame,
            analyzer=vision_analyzer or self._build_vision_analyzer(),
        )

        self.orchestrator.register_tool(TOOL_BOOK_SEARCH, self.reading.handle_search)
        self.orchestrator.register_tool(TOOL_DISPLAY_PAGE, self.reading.handle_display_page)
        self.orchestrator.register_tool(TOOL_GET_EYES, self.vision.handle)

        self._unsubscribe_turn = self.turn.subscribe(self._on_turn_state)
        self._unsubscribe_narration = self.turn.subscribe_narration(self._on_narration_state)

    # ==================================================================
    # Collaborator construction (from AppConfig)
    # ==================================================================

    def _require_http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("http_client is required unless collaborators are injected")
        return self._http

    def _require_openai(self) -> Any:
        if self._openai_client is None:
            raise RuntimeError("openai_client is required unless collaborators are injected")
        return self._openai_client

    def _build_session_provider(self) -> SessionProvider:
        if self._config.session_provider == "backend":
            return BackendSessionProvider(
                client=self._require_http(),
                base_url=self._config.book_api_base_url,
            )
        return OpenAISessionProvider(
            client=self._require_openai(),
            model=self._config.realtime_model,
            voice=self._config.realtime_voice,
        )

    def _build_transport(self) -> RealtimeTransport:
        if self._config.realtime_transport == "websocket":
            return WebSocketTransport(
                url=self._config.realtime_ws_url,
                model=self._config.realtime_model,
                on_agent_audio=self._on_agent_audio,
            )
        return WebRTCTransport(
            http=self._require_http(),
            sdp_url=self._config.realtime_sdp_url,
            model=self._config.realtime_model,
            on_agent_audio=self._on_agent_audio,
        )

    def _build_media(self) -> MediaCapture:
        return DeviceMediaCapture(
            audio_device=self._config.audio_input_device,
            audio_format=self._config.audio_input_format,
            video_device=self._config.video_input_device,
            video_format=self._config.video_input_format,
        )

    def _build_catalog(self) -> BookCatalog:
        return HttpBookCatalog(
            client=self._require_http(),
            base_url=self._config.book_api_base_url,
        )

    def _build_vision_analyzer(self) -> VisionAnalyzer:
        return OpenAIVisionAnalyzer(
            client=self._require_openai(),
            model=self._config.vision_model,
        )

    # ==================================================================
    # WebSocket boundary
    # ==================================================================

    async def on_ws_connect(self) -> None:
        """Called when the UI WebSocket is accepted."""
        log_event({"event_type": "ui_connected", "gateway_id": self.gateway_id})
        self._push_json({
            "type": "SESSION_INIT",
            "gatewayId": self.gateway_id,
            "turnState": self.turn.state.value,
            "connectionStatus": self.orchestrator.status.value,
            "audioFormat": {
                "encoding": REALTIME_AUDIO_FORMAT,
                "sample_rate": REALTIME_SAMPLE_RATE_HZ,
                "channels": REALTIME_CHANNELS,
            },
        })

    async def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Called when the UI WebSocket goes away. Idempotent."""
        if self._closed:
            return
        self._closed = True

        self.reading.close()
        await self.orchestrator.disconnect(reason or "client_disconnect")

        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done():
            task.cancel()
        for bg in list(self._background):
            bg.cancel()

        self._unsubscribe_turn()
        self._unsubscribe_narration()
        await self.turn.aclose()

        log_event({
            "event_type": "ui_disconnected",
            "gateway_id": self.gateway_id,
            "reason": reason,
        })

    async def on_json_message(self, payload: str) -> None:
        """Handle one inbound UI text frame. Never raises."""
        try:
            msg = json.loads(payload)
        except ValueError:
            self._drop_ui_message("invalid_json", payload)
            return
        if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
            self._drop_ui_message("missing_type", payload)
            return

        try:
            await self._dispatch(msg)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "ui_command_failed",
                "gateway_id": self.gateway_id,
                "command": msg["type"],
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            self._push_json({"type": "ERROR", "callId": None, "message": str(exc)})

    async def next_outbound(self) -> Outbound:
        """Next message for the UI, in order. Blocks until one exists."""
        item = await self._outbox.get()
        if item[0] == "binary":
            self._pending_audio -= 1
        return item

    # ==================================================================
    # Command dispatch
    # ==================================================================

    async def _dispatch(self, msg: dict[str, Any]) -> None:
        cmd = msg["type"]
        log_event({
            "level": "DEBUG",
            "event_type": "ui_command",
            "gateway_id": self.gateway_id,
            "command": cmd,
        })

        if cmd == "CONNECT":
            self._start_connect(msg.get("childId"))
        elif cmd == "DISCONNECT":
            self.reading.exit_reading_session()
            await self.orchestrator.disconnect("user")
        elif cmd == "RESET":
            self.turn.reset("ui")
        elif cmd == "NEXT_PAGE":
            await self.reading.next_page()
        elif cmd == "PREVIOUS_PAGE":
            await self.reading.previous_page()
        elif cmd == "EXIT_READING":
            self.reading.exit_reading_session()
        elif cmd == "NARRATION_EVENT":
            self.player.report(msg.get("clipId"), str(msg.get("event", "")))
        else:
            log_event({
                "level": "WARNING",
                "event_type": "ui_command_unknown",
                "gateway_id": self.gateway_id,
                "command": cmd,
            })

    def _start_connect(self, child_id: Any) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            log_event({
                "level": "WARNING",
                "event_type": "connect_already_in_progress",
                "gateway_id": self.gateway_id,
            })
            return
        # connect() can take several retries; keep receiving UI commands meanwhile
        self._connect_task = asyncio.get_running_loop().create_task(
            self._run_connect(str(child_id) if child_id else None)
        )

    async def _run_connect(self, child_id: str | None) -> None:
        try:
            await self.orchestrator.connect(child_id)
        except FatalSessionError as exc:
            # on_error already pushed the ERROR message to the UI
            log_event({
                "level": "ERROR",
                "event_type": "connect_gave_up",
                "gateway_id": self.gateway_id,
                "message": str(exc),
            })

    # ==================================================================
    # Collaborator callbacks -> UI
    # ==================================================================

    def _on_turn_state(self, state: TurnState) -> None:
        self._push_json({"type": "TURN_STATE", "state": state.value})

    def _on_narration_state(self, active: bool) -> None:
        self._push_json({"type": "NARRATION_STATE", "active": active})

    def _on_status_change(self, status: ConnectionStatus) -> None:
        self._push_json({"type": "CONNECTION_STATUS", "status": status.value})

    def _on_book_state_change(self, state: BookState) -> None:
        self._push_json({"type": "BOOK_STATE", "state": state.value})

    def _on_page_display(self, page: PageData) -> None:
        self._push_json({"type": "PAGE_DISPLAY", "page": page.to_display()})

    def _on_reading_mode_change(self, active: bool) -> None:
        self._push_json({"type": "READING_MODE", "active": active})
        self._spawn(self.orchestrator.update_reading_mode(active))

    def _on_function_result(self, call_id: str, output: str) -> None:
        self._push_json({"type": "TOOL_RESULT", "callId": call_id, "output": output})

    def _on_transcript(self, role: str, text: str) -> None:
        self._push_json({"type": "TRANSCRIPT", "role": role, "text": text})

    def _on_error(self, call_id: str | None, message: str) -> None:
        self._push_json({"type": "ERROR", "callId": call_id, "message": message})

    def _on_agent_audio(self, pcm: bytes) -> None:
        if self._closed:
            return
        if self._pending_audio >= _MAX_PENDING_AUDIO_FRAMES:
            log_event({
                "level": "WARNING",
                "event_type": "agent_audio_backpressure_drop",
                "gateway_id": self.gateway_id,
                "bytes": len(pcm),
            })
            return
        seq = next_seq(self._audio_seq)
        try:
            frame = encode_agent_audio_frame(sequence_num=seq, pcm_bytes=pcm)
        except BinaryProtocolError as exc:
            log_event({
                "level": "WARNING",
                "event_type": "agent_audio_frame_rejected",
                "gateway_id": self.gateway_id,
                "error": str(exc),
            })
            return
        self._audio_seq = seq
        self._pending_audio += 1
        self._outbox.put_nowait(("binary", frame))

    # ==================================================================
    # Internal
    # ==================================================================

    def _push_json(self, msg: dict[str, Any]) -> None:
        if self._closed:
            return
        msg.setdefault("ts_ms", _now_ms())
        self._outbox.put_nowait(("json", msg))

    def _drop_ui_message(self, reason: str, payload: str) -> None:
        log_event({
            "level": "WARNING",
            "event_type": "ui_message_dropped",
            "gateway_id": self.gateway_id,
            "reason": reason,
            "payload_preview": preview(payload),
        })

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
