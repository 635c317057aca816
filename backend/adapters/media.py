"""
Local microphone / camera capture.

Responsibilities:
- Open the microphone for the realtime transport
- Open the camera lazily, only when a frame is actually requested
- Encode single frames as base64 JPEG for the vision tool
- Release every device it opened

Non-responsibilities:
- NO retries (the connect loop retries MediaAccessError)
- NO ownership decisions (ConnectionOrchestrator owns this object while
  connected; the vision tool only borrows frames through capture_frame)
"""

from __future__ import annotations

import asyncio
import base64
from abc import ABC, abstractmethod
from fractions import Fraction
from typing import Any

import av
from av.error import FFmpegError
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import MediaStreamError

from errors import MediaAccessError
from observability.logger import log_event


_FRAME_RECV_TIMEOUT_S = 2.0


class MediaCapture(ABC):
    """Abstract local media source."""

    @abstractmethod
    async def acquire_audio(self) -> Any:
        """
        Open the microphone and return its track.

        Raises:
            MediaAccessError: device missing, busy or not permitted.
        """
        raise NotImplementedError

    @abstractmethod
    async def capture_frame(self) -> str | None:
        """
        Return one camera frame as base64 JPEG, or None if no frame was ready.

        Opens the camera on first use.

        Raises:
            MediaAccessError: camera cannot be opened.
        """
        raise NotImplementedError

    @abstractmethod
    async def release(self) -> None:
        """Stop every opened device. Idempotent, never raises."""
        raise NotImplementedError


class DeviceMediaCapture(MediaCapture):
    """MediaCapture backed by aiortc MediaPlayer (ffmpeg devices)."""

    def __init__(
        self,
        *,
        audio_device: str,
        audio_format: str,
        video_device: str,
        video_format: str,
    ) -> None:
        self._audio_device = audio_device
        self._audio_format = audio_format
        self._video_device = video_device
        self._video_format = video_format
        self._audio_player: MediaPlayer | None = None
        self._video_player: MediaPlayer | None = None

    async def acquire_audio(self) -> Any:
        if self._audio_player is not None and self._audio_player.audio is not None:
            return self._audio_player.audio

        player = self._open(self._audio_device, self._audio_format, kind="audio")
        if player.audio is None:
            _stop_player(player)
            raise MediaAccessError(f"no audio stream on {self._audio_device}")

        self._audio_player = player
        log_event({
            "event_type": "media_audio_acquired",
            "device": self._audio_device,
        })
        return player.audio

    async def capture_frame(self) -> str | None:
        if self._video_player is None:
            player = self._open(self._video_device, self._video_format, kind="video")
            if player.video is None:
                _stop_player(player)
                raise MediaAccessError(f"no video stream on {self._video_device}")
            self._video_player = player
            log_event({
                "event_type": "media_video_acquired",
                "device": self._video_device,
            })

        track = self._video_player.video
        try:
            frame = await asyncio.wait_for(track.recv(), timeout=_FRAME_RECV_TIMEOUT_S)
        except (asyncio.TimeoutError, MediaStreamError):
            return None

        jpeg = _encode_jpeg(frame)
        if not jpeg:
            return None
        return base64.b64encode(jpeg).decode("ascii")

    async def release(self) -> None:
        for player in (self._audio_player, self._video_player):
            if player is not None:
                _stop_player(player)
        released = self._audio_player is not None or self._video_player is not None
        self._audio_player = None
        self._video_player = None
        if released:
            log_event({"event_type": "media_released"})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _open(device: str, fmt: str, *, kind: str) -> MediaPlayer:
        try:
            return MediaPlayer(device, format=fmt)
        except (FFmpegError, OSError) as exc:
            raise MediaAccessError(f"cannot open {kind} device {device}: {exc}") from exc


def _stop_player(player: MediaPlayer) -> None:
    for track in (player.audio, player.video):
        if track is None:
            continue
        try:
            track.stop()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "WARNING",
                "event_type": "media_track_stop_failed",
                "kind": track.kind,
                "error": str(exc),
            })


def _encode_jpeg(frame: av.VideoFrame) -> bytes:
    codec = av.CodecContext.create("mjpeg", "w")
    codec.width = frame.width
    codec.height = frame.height
    codec.pix_fmt = "yuvj420p"
    codec.time_base = Fraction(1, 30)
    packets = codec.encode(frame.reformat(format="yuvj420p"))
    return b"".join(bytes(packet) for packet in packets)
