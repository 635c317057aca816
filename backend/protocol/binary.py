"""
Binary framing for agent audio sent to the host UI.

Server -> UI (agent speech):
    4 bytes  seq_num (u32, little-endian)
    N bytes  PCM16 mono @ 24 kHz (N even, N > 0)

seq_num starts at 1 per UI connection and wraps after 2**32 - 1.

Usage example:

    payload = encode_agent_audio_frame(sequence_num=seq, pcm_bytes=pcm)
    await websocket.send_bytes(payload)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass


SEQ_NUM_START = 1
SEQ_NUM_MAX = 0xFFFF_FFFF
HEADER_BYTES = 4


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when an audio payload is empty or not whole PCM16 samples.

    The frame is unsafe to play and must be dropped.
    """


class InvalidSequenceNumber(BinaryProtocolError):
    """Raised when a sequence number is outside the valid range."""


# -------------------------
# Low-level helpers
# -------------------------

def _u32_le(value: int) -> bytes:
    return struct.pack("<I", value)


def _read_u32_le(buf: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<I", buf, offset)[0]


def next_seq(prev: int) -> int:
    """Sequence number after prev, accounting for wraparound."""
    if prev >= SEQ_NUM_MAX:
        return SEQ_NUM_START
    return prev + 1


# -------------------------
# Server -> UI
# -------------------------

@dataclass(frozen=True)
class AgentAudioFrame:
    sequence_num: int
    pcm_bytes: bytes


def encode_agent_audio_frame(*, sequence_num: int, pcm_bytes: bytes) -> bytes:
    if sequence_num < SEQ_NUM_START or sequence_num > SEQ_NUM_MAX:
        raise InvalidSequenceNumber(f"Invalid seq_num: {sequence_num}")
    if not pcm_bytes or len(pcm_bytes) % 2:
        raise InvalidFrameLength(f"PCM length {len(pcm_bytes)} is not whole samples")
    return _u32_le(sequence_num) + pcm_bytes


def decode_agent_audio_frame(payload: bytes) -> AgentAudioFrame:
    """Inverse of encode_agent_audio_frame (UI side, tests)."""
    if len(payload) <= HEADER_BYTES or (len(payload) - HEADER_BYTES) % 2:
        raise InvalidFrameLength(f"frame length {len(payload)} is invalid")

    seq = _read_u32_le(payload, 0)
    if seq < SEQ_NUM_START:
        raise InvalidSequenceNumber(f"Invalid seq_num: {seq}")

    return AgentAudioFrame(sequence_num=seq, pcm_bytes=payload[HEADER_BYTES:])
