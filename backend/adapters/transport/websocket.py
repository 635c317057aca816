"""
WebSocket realtime transport (websockets).

Core model:
- One WebSocket per session attempt; the socket IS the control channel.
- The socket can only be opened with the token, so on_open fires at the
  end of negotiate().
- Microphone frames are resampled to 24 kHz mono PCM16 (av + numpy) and
  sent as base64 input_audio_buffer.append messages.
- Agent audio arrives as base64 audio deltas inside control messages.
  Those are the only messages this transport reads; every message (deltas
  included) is still forwarded to on_message untouched.

Design constraints:
- Transport does not retry; every failure maps to a typed connection error.
- close() never fires on_close.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

from aiortc.mediastreams import MediaStreamError
from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from adapters.transport.base import AgentAudioHandler, RealtimeTransport
from adapters.transport.pcm import (
    b64_to_pcm16,
    frame_to_pcm16,
    new_resampler,
    pcm16_to_b64,
)
from errors import AuthenticationFailedError, ChannelError, NegotiationError
from observability.logger import log_event
from protocol.envelopes import build_audio_append


_AUDIO_DELTA_TYPES = frozenset({"response.audio.delta", "response.output_audio.delta"})
_CONNECT_TIMEOUT_S = 10.0


class WebSocketTransport(RealtimeTransport):
    """RealtimeTransport over a single WebSocket."""

    def __init__(
        self,
        *,
        url: str,
        model: str,
        on_agent_audio: AgentAudioHandler | None = None,
    ) -> None:
        super().__init__(on_agent_audio=on_agent_audio)
        self._url = url
        self._model = model

        self._ws: ClientConnection | None = None
        self._mic_track: Any = None
        self._recv_task: asyncio.Task[None] | None = None
        self._mic_task: asyncio.Task[None] | None = None
        self._opened = False
        self._closing = False
        self._close_reported = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def open_channel(self) -> None:
        if self._opened:
            raise NegotiationError("transport already used")
        self._opened = True

    def attach_audio(self, track: Any) -> None:
        self._mic_track = track

    async def negotiate(self, token: str) -> None:
        headers = {
            "Authorization": f"Bearer {token}",
            "OpenAI-Beta": "realtime=v1",
        }
        url = f"{self._url}?model={self._model}"

        try:
            ws = await ws_connect(
                url,
                additional_headers=headers,
                max_size=2**24,
                open_timeout=_CONNECT_TIMEOUT_S,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise AuthenticationFailedError(f"socket rejected: {status}") from exc
            raise NegotiationError(f"socket handshake failed: {status}") from exc
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise NegotiationError(f"socket connect failed: {exc}") from exc

        self._ws = ws
        loop = asyncio.get_running_loop()
        self._recv_task = loop.create_task(self._recv_loop(ws))
        if self._mic_track is not None:
            self._mic_task = loop.create_task(self._pump_microphone(ws, self._mic_track))

        log_event({"event_type": "websocket_negotiated", "model": self._model})
        self._fire(self._on_open)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send(self, envelope: Mapping[str, Any]) -> None:
        ws = self._ws
        if ws is None or self._closing:
            raise ChannelError("socket is not open")
        try:
            await ws.send(json.dumps(envelope))
        except ConnectionClosed as exc:
            raise ChannelError(f"socket send failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        self._closing = True

        for task in (self._mic_task, self._recv_task):
            if task is not None and not task.done():
                task.cancel()
        self._mic_task = None
        self._recv_task = None

        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "websocket_close_failed",
                    "error": str(exc),
                })

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _recv_loop(self, ws: ClientConnection) -> None:
        reason = "socket closed"
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self._maybe_emit_audio(raw)
                self._fire(self._on_message, raw)
        except asyncio.CancelledError:
            return
        except ConnectionClosed as exc:
            reason = f"socket closed: {exc}"
            self._fire(self._on_error, exc)

        self._report_close(reason)

    async def _pump_microphone(self, ws: ClientConnection, track: Any) -> None:
        resampler = new_resampler()
        try:
            while True:
                frame = await track.recv()
                pcm = frame_to_pcm16(resampler, frame)
                if not pcm:
                    continue
                await ws.send(json.dumps(build_audio_append(pcm16_to_b64(pcm))))
        except (asyncio.CancelledError, MediaStreamError, ConnectionClosed):
            return

    def _maybe_emit_audio(self, raw: str) -> None:
        if self._on_agent_audio is None or "audio.delta" not in raw:
            return
        try:
            data = json.loads(raw)
        except ValueError:
            return
        if not isinstance(data, dict) or data.get("type") not in _AUDIO_DELTA_TYPES:
            return
        delta = data.get("delta")
        if not isinstance(delta, str):
            return
        try:
            pcm = b64_to_pcm16(delta)
        except ValueError as exc:
            log_event({
                "level": "WARNING",
                "event_type": "agent_audio_dropped",
                "error": str(exc),
            })
            return
        self._fire(self._on_agent_audio, pcm)

    def _report_close(self, reason: str) -> None:
        if self._closing or self._close_reported:
            return
        self._close_reported = True
        self._fire(self._on_close, reason)
