"""
WebRTC realtime transport (aiortc).

Core model:
- One RTCPeerConnection per session attempt.
- Microphone track goes up as a WebRTC audio track.
- Agent audio comes down as a remote track; frames are converted to PCM16
  and handed to on_agent_audio.
- JSON control messages travel on the "oai-events" data channel.
- Offer/answer is one HTTP POST of the SDP offer (httpx) with the
  ephemeral token as Bearer auth.

Design constraints:
- Transport does not parse control messages.
- Transport does not retry; every failure maps to a typed connection error.
- close() never fires on_close.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

import httpx
from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.mediastreams import MediaStreamError

from adapters.transport.base import AgentAudioHandler, RealtimeTransport
from adapters.transport.pcm import frame_to_pcm16, new_resampler
from constants import DATA_CHANNEL_LABEL
from errors import AuthenticationFailedError, ChannelError, NegotiationError
from observability.logger import log_event


class WebRTCTransport(RealtimeTransport):
    """RealtimeTransport over an aiortc peer connection + data channel."""

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        sdp_url: str,
        model: str,
        on_agent_audio: AgentAudioHandler | None = None,
    ) -> None:
        super().__init__(on_agent_audio=on_agent_audio)
        self._http = http
        self._sdp_url = sdp_url
        self._model = model

        self._pc: RTCPeerConnection | None = None
        self._channel: Any = None  # Type: aiortc.RTCDataChannel
        self._has_local_audio = False
        self._remote_audio_task: asyncio.Task[None] | None = None
        self._closing = False
        self._close_reported = False

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def open_channel(self) -> None:
        try:
            pc = RTCPeerConnection()
            channel = pc.createDataChannel(DATA_CHANNEL_LABEL)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise NegotiationError(f"peer connection setup failed: {exc}") from exc

        self._pc = pc
        self._channel = channel

        @channel.on("open")
        def _on_open() -> None:
            log_event({"event_type": "webrtc_channel_open", "label": DATA_CHANNEL_LABEL})
            self._fire(self._on_open)

        @channel.on("message")
        def _on_message(message: Any) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self._fire(self._on_message, message)

        @channel.on("close")
        def _on_close() -> None:
            self._report_close("data channel closed")

        @pc.on("track")
        def _on_track(track: Any) -> None:
            if track.kind != "audio":
                return
            self._remote_audio_task = asyncio.get_running_loop().create_task(
                self._pump_remote_audio(track)
            )

        @pc.on("connectionstatechange")
        async def _on_state_change() -> None:
            state = pc.connectionState
            log_event({"event_type": "webrtc_connection_state", "state": state})
            if state == "failed":
                self._fire(self._on_error, NegotiationError("peer connection failed"))
                self._report_close("peer connection failed")
            elif state == "closed":
                self._report_close("peer connection closed")

    def attach_audio(self, track: Any) -> None:
        if self._pc is None:
            raise NegotiationError("attach_audio() before open_channel()")
        self._pc.addTrack(track)
        self._has_local_audio = True

    async def negotiate(self, token: str) -> None:
        pc = self._pc
        if pc is None:
            raise NegotiationError("negotiate() before open_channel()")

        if not self._has_local_audio:
            pc.addTransceiver("audio", direction="recvonly")

        try:
            offer = await pc.createOffer()
            # aiortc gathers ICE candidates inside setLocalDescription
            await pc.setLocalDescription(offer)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise NegotiationError(f"offer creation failed: {exc}") from exc

        try:
            response = await self._http.post(
                self._sdp_url,
                params={"model": self._model},
                content=pc.localDescription.sdp,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/sdp",
                },
            )
        except httpx.HTTPError as exc:
            raise NegotiationError(f"SDP exchange failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailedError(
                f"SDP exchange rejected: {response.status_code}"
            )
        if response.is_error:
            raise NegotiationError(
                f"SDP exchange failed: {response.status_code} - {response.text[:200]}"
            )

        try:
            await pc.setRemoteDescription(
                RTCSessionDescription(sdp=response.text, type="answer")
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise NegotiationError(f"invalid SDP answer: {exc}") from exc

        log_event({"event_type": "webrtc_negotiated", "model": self._model})

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send(self, envelope: Mapping[str, Any]) -> None:
        if not self.is_open:
            raise ChannelError("data channel is not open")
        try:
            self._channel.send(json.dumps(envelope))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise ChannelError(f"data channel send failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        self._closing = True

        task = self._remote_audio_task
        self._remote_audio_task = None
        if task is not None and not task.done():
            task.cancel()

        channel = self._channel
        self._channel = None
        if channel is not None:
            try:
                channel.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "webrtc_channel_close_failed",
                    "error": str(exc),
                })

        pc = self._pc
        self._pc = None
        if pc is not None:
            try:
                await pc.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "webrtc_close_failed",
                    "error": str(exc),
                })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _report_close(self, reason: str) -> None:
        if self._closing or self._close_reported:
            return
        self._close_reported = True
        self._fire(self._on_close, reason)

    async def _pump_remote_audio(self, track: Any) -> None:
        resampler = new_resampler()
        try:
            while True:
                frame = await track.recv()
                pcm = frame_to_pcm16(resampler, frame)
                if pcm:
                    self._fire(self._on_agent_audio, pcm)
        except (asyncio.CancelledError, MediaStreamError):
            return
