# pylint: disable=missing-module-docstring,missing-function-docstring

import io
import json
import struct

import pytest

from protocol.codec import EndOfStream, TruncatedFrame, encode_frame, encode_header
from protocol.container import (
    ContainerDecoder,
    DecoderState,
    InvalidFormatVersion,
    InvalidMetadata,
    NotDCA,
    NotFirstFrame,
    TruncatedHeader,
)


def i16(value: int) -> bytes:
    return struct.pack("<h", value)


def i32(value: int) -> bytes:
    return struct.pack("<i", value)


def decoder_for(data: bytes) -> ContainerDecoder:
    return ContainerDecoder(io.BytesIO(data))


# ---------------------------------------------------------------------
# Full container
# ---------------------------------------------------------------------

def test_header_metadata_and_single_frame():
    dec = decoder_for(b"DCA1" + i32(2) + b"{}" + i16(3) + b"\x01\x02\x03")

    assert dec.read_metadata() == {}
    assert dec.format_version == 1
    assert dec.metadata == {}
    assert dec.next_frame() == b"\x01\x02\x03"

    with pytest.raises(EndOfStream):
        dec.next_frame()


def test_next_frame_reads_header_implicitly():
    metadata = {"dca": {"version": 1}, "extra": {"title": "x"}}
    payloads = [b"\x10" * 7, b"\x20" * 9]
    data = encode_header(metadata, format_version=1) + b"".join(
        encode_frame(p) for p in payloads
    )
    dec = decoder_for(data)

    assert not dec.header_consumed
    assert list(dec) == payloads
    assert dec.header_consumed
    assert dec.metadata == metadata
    assert dec.format_version == 1


def test_metadata_twice_is_not_first_frame():
    dec = decoder_for(encode_header({"a": 1}) + encode_frame(b"x"))

    dec.read_metadata()

    with pytest.raises(NotFirstFrame):
        dec.read_metadata()


def test_metadata_after_first_frame_is_not_first_frame():
    dec = decoder_for(encode_header({"a": 1}) + encode_frame(b"x"))

    assert dec.next_frame() == b"x"

    with pytest.raises(NotFirstFrame):
        dec.read_metadata()


# ---------------------------------------------------------------------
# Bare frame streams
# ---------------------------------------------------------------------

def test_bare_frame_stream():
    dec = decoder_for(i16(2) + b"\xaa\xbb")

    assert dec.next_frame() == b"\xaa\xbb"
    assert dec.format_version == 0
    assert dec.metadata is None
    assert dec.state is DecoderState.STREAMING_FRAMES


def test_not_dca_consumes_nothing():
    dec = decoder_for(i16(2) + b"\xaa\xbb" + i16(1) + b"\xcc")

    with pytest.raises(NotDCA):
        dec.read_metadata()

    assert list(dec) == [b"\xaa\xbb", b"\xcc"]


def test_bare_stream_shorter_than_magic():
    # A zero-length frame is only two bytes long
    dec = decoder_for(i16(0))

    assert dec.next_frame() == b""


def test_bare_truncated_frame():
    dec = decoder_for(i16(10) + b"\x01\x02")

    with pytest.raises(TruncatedFrame):
        dec.next_frame()


# ---------------------------------------------------------------------
# Malformed headers
# ---------------------------------------------------------------------

def test_empty_stream():
    with pytest.raises(EndOfStream):
        decoder_for(b"").read_metadata()

    with pytest.raises(EndOfStream):
        decoder_for(b"").next_frame()


def test_non_digit_version():
    dec = decoder_for(b"DCAx" + i32(2) + b"{}")

    with pytest.raises(InvalidFormatVersion):
        dec.read_metadata()

    assert isinstance(InvalidFormatVersion("x"), ValueError)


def test_invalid_json_surfaces_decode_error():
    dec = decoder_for(b"DCA1" + i32(3) + b"{x}")

    with pytest.raises(json.JSONDecodeError):
        dec.next_frame()

    assert dec.metadata is None


def test_metadata_must_be_object():
    dec = decoder_for(b"DCA1" + i32(2) + b"[]")

    with pytest.raises(InvalidMetadata):
        dec.read_metadata()

    assert dec.metadata is None


def test_metadata_must_be_utf8():
    dec = decoder_for(b"DCA1" + i32(4) + b"\"\xff\xfe\"")

    with pytest.raises(InvalidMetadata):
        dec.read_metadata()

    assert dec.metadata is None


def test_truncated_metadata():
    dec = decoder_for(b"DCA1" + i32(50) + b"{}")

    with pytest.raises(TruncatedHeader):
        dec.read_metadata()


def test_missing_metadata_length():
    with pytest.raises(TruncatedHeader):
        decoder_for(b"DCA1\x01").read_metadata()


def test_failed_header_is_not_retried():
    dec = decoder_for(b"DCAx")

    with pytest.raises(InvalidFormatVersion):
        dec.read_metadata()

    with pytest.raises(NotFirstFrame):
        dec.read_metadata()
