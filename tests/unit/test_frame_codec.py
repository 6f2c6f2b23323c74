# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import io
import struct

import pytest

from constants import MAX_FRAME_BYTES
from protocol.codec import (
    EndOfStream,
    InvalidFrameLength,
    TruncatedFrame,
    decode_frame,
    encode_frame,
    encode_header,
    read_frame,
)


def i16(value: int) -> bytes:
    return struct.pack("<h", value)


class TrickleStream:
    """Returns at most one byte per read, like a slow pipe."""

    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)

    def read(self, n: int = -1) -> bytes:
        return self._buf.read(min(n, 1) if n >= 0 else -1)


# ---------------------------------------------------------------------
# decode_frame
# ---------------------------------------------------------------------

def test_decode_frames_in_order_then_end_of_stream():
    payloads = [b"\x01\x02\x03", b"", b"\xff" * 300]
    stream = io.BytesIO(b"".join(encode_frame(p) for p in payloads))

    assert [decode_frame(stream) for _ in payloads] == payloads

    with pytest.raises(EndOfStream):
        decode_frame(stream)


def test_decode_empty_stream_is_end_of_stream():
    with pytest.raises(EndOfStream):
        decode_frame(io.BytesIO(b""))


def test_end_of_stream_is_an_eof_error():
    assert issubclass(EndOfStream, EOFError)


def test_decode_rejects_short_payload():
    stream = io.BytesIO(i16(5) + b"\x01\x02")

    with pytest.raises(TruncatedFrame):
        decode_frame(stream)


def test_decode_rejects_partial_prefix():
    with pytest.raises(TruncatedFrame):
        decode_frame(io.BytesIO(b"\x05"))


def test_decode_rejects_negative_length():
    with pytest.raises(InvalidFrameLength):
        decode_frame(io.BytesIO(i16(-1) + b"\x00"))


def test_decode_handles_short_reads():
    stream = TrickleStream(encode_frame(b"abcdef") + encode_frame(b"gh"))

    assert decode_frame(stream) == b"abcdef"
    assert decode_frame(stream) == b"gh"


# ---------------------------------------------------------------------
# read_frame (asyncio)
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_read_frame_from_stream_reader():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_frame(b"\xaa\xbb") + i16(4) + b"\x01")
    reader.feed_eof()

    assert await read_frame(reader) == b"\xaa\xbb"

    with pytest.raises(TruncatedFrame):
        await read_frame(reader)


@pytest.mark.asyncio
async def test_read_frame_clean_end():
    reader = asyncio.StreamReader()
    reader.feed_eof()

    with pytest.raises(EndOfStream):
        await read_frame(reader)


@pytest.mark.asyncio
async def test_read_frame_partial_prefix():
    reader = asyncio.StreamReader()
    reader.feed_data(b"\x01")
    reader.feed_eof()

    with pytest.raises(TruncatedFrame):
        await read_frame(reader)


# ---------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------

def test_encode_frame_prefix_is_little_endian():
    assert encode_frame(b"\x01\x02\x03") == b"\x03\x00\x01\x02\x03"


def test_encode_frame_rejects_oversized_payload():
    encode_frame(b"\x00" * MAX_FRAME_BYTES)

    with pytest.raises(InvalidFrameLength):
        encode_frame(b"\x00" * (MAX_FRAME_BYTES + 1))


def test_encode_header_layout():
    header = encode_header({}, format_version=1)

    assert header == b"DCA1" + struct.pack("<i", 2) + b"{}"


def test_encode_header_rejects_multi_digit_version():
    with pytest.raises(ValueError):
        encode_header({}, format_version=10)
