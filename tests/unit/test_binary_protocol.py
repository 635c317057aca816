# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from protocol.binary import (
    HEADER_BYTES,
    SEQ_NUM_MAX,
    SEQ_NUM_START,
    InvalidFrameLength,
    InvalidSequenceNumber,
    decode_agent_audio_frame,
    encode_agent_audio_frame,
    next_seq,
)


PCM = b"\x01\x00\xff\x7f" * 120


# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------

def test_header_is_little_endian_seq():
    payload = encode_agent_audio_frame(sequence_num=0x01020304, pcm_bytes=PCM)

    assert payload[:HEADER_BYTES] == b"\x04\x03\x02\x01"
    assert payload[HEADER_BYTES:] == PCM


def test_decode_recovers_fields():
    frame = decode_agent_audio_frame(
        encode_agent_audio_frame(sequence_num=SEQ_NUM_MAX, pcm_bytes=PCM)
    )

    assert frame.sequence_num == SEQ_NUM_MAX
    assert frame.pcm_bytes == PCM


# ---------------------------------------------------------------------
# Invalid frame lengths
# ---------------------------------------------------------------------

@pytest.mark.parametrize("pcm", [b"", b"\x00", b"\x00\x00\x00"])
def test_encode_rejects_partial_samples(pcm: bytes):
    with pytest.raises(InvalidFrameLength):
        encode_agent_audio_frame(sequence_num=1, pcm_bytes=pcm)


@pytest.mark.parametrize("payload", [
    b"",
    b"\x01\x00\x00",
    b"\x01\x00\x00\x00",
    b"\x01\x00\x00\x00\x00",
])
def test_decode_rejects_bad_lengths(payload: bytes):
    with pytest.raises(InvalidFrameLength):
        decode_agent_audio_frame(payload)


# ---------------------------------------------------------------------
# Sequence number validation
# ---------------------------------------------------------------------

@pytest.mark.parametrize("seq", [0, -1, SEQ_NUM_MAX + 1])
def test_encode_rejects_invalid_seq(seq: int):
    with pytest.raises(InvalidSequenceNumber):
        encode_agent_audio_frame(sequence_num=seq, pcm_bytes=PCM)


def test_decode_rejects_seq_zero():
    payload = (0).to_bytes(4, "little") + PCM

    with pytest.raises(InvalidSequenceNumber):
        decode_agent_audio_frame(payload)


def test_next_seq_wraps_to_start():
    assert next_seq(SEQ_NUM_START) == 2
    assert next_seq(SEQ_NUM_MAX - 1) == SEQ_NUM_MAX
    assert next_seq(SEQ_NUM_MAX) == SEQ_NUM_START
