"""
PCM16 conversion helpers shared by the transports.

Realtime audio format:
- PCM16 signed, little-endian
- Mono
- 24 kHz

Design:
- Pure functions apart from the resampler's internal buffer.
- No queues, no timing, no IO.
"""

from __future__ import annotations

import base64

import av
import numpy as np

from constants import REALTIME_SAMPLE_RATE_HZ


def new_resampler() -> av.AudioResampler:
    """Resampler from any capture/remote format to realtime PCM16 mono."""
    return av.AudioResampler(format="s16", layout="mono", rate=REALTIME_SAMPLE_RATE_HZ)


def frame_to_pcm16(resampler: av.AudioResampler, frame: av.AudioFrame) -> bytes:
    """
    Convert one decoded audio frame to realtime PCM16 bytes.

    May return b"" while the resampler is still buffering.
    """
    chunks: list[bytes] = []
    for out in resampler.resample(frame):
        samples = out.to_ndarray()
        chunks.append(np.ascontiguousarray(samples, dtype=np.int16).tobytes())
    return b"".join(chunks)


def pcm16_to_b64(pcm: bytes) -> str:
    return base64.b64encode(pcm).decode("ascii")


def b64_to_pcm16(data: str) -> bytes:
    """
    Decode a base64 audio delta.

    Raises:
        ValueError: not base64, or an odd number of bytes.
    """
    raw = base64.b64decode(data, validate=True)
    if len(raw) % 2:
        raise ValueError(f"PCM16 payload has odd length {len(raw)}")
    return raw


def pcm16_duration_ms(pcm: bytes) -> int:
    return (len(pcm) // 2) * 1000 // REALTIME_SAMPLE_RATE_HZ
