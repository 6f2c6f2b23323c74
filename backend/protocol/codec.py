# backend/protocol/codec.py
"""
Length-prefixed opus frame codec.

Wire format (per frame, repeating):
    2 bytes  frame length L (i16, little-endian)
    L bytes  opus payload

Container header (optional, precedes the first frame):
    3 bytes  "DCA"
    1 byte   format version, ASCII digit
    4 bytes  metadata length N (i32, little-endian)
    N bytes  UTF-8 JSON object

Usage example:

    with open("song.dca", "rb") as fh:
        payload = decode_frame(fh)

    frame = await read_frame(source)   # asyncio sources (readexactly)

    blob = encode_header({"tool": "x"}) + encode_frame(payload)
"""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any, Mapping, Protocol

from constants import (
    DCA_MAGIC,
    DEFAULT_FORMAT_VERSION,
    FRAME_LENGTH_BYTES,
    FRAME_LENGTH_FORMAT,
    MAX_FRAME_BYTES,
    METADATA_LENGTH_FORMAT,
)


# -------------------------
# Exceptions
# -------------------------

class ContainerError(Exception):
    """Base class for container and frame decoding errors."""


class EndOfStream(ContainerError, EOFError):
    """
    Raised when the stream is exhausted exactly at a frame boundary.

    This is clean termination, not corruption.
    """


class TruncatedFrame(ContainerError):
    """
    Raised when a frame prefix or payload is cut short.

    No partial frame is returned; the stream is unsafe to keep reading.
    """


class InvalidFrameLength(ContainerError, ValueError):
    """Raised when a frame length is negative or does not fit the prefix."""


# -------------------------
# Readers
# -------------------------

class ByteReader(Protocol):
    """Anything with a blocking ``read(n)`` returning at most n bytes."""

    def read(self, n: int = -1, /) -> bytes: ...


class AsyncByteSource(Protocol):
    """Anything with ``asyncio.StreamReader.readexactly`` semantics."""

    async def readexactly(self, n: int) -> bytes: ...


def read_fully(stream: ByteReader, n: int) -> bytes:
    """
    Read up to n bytes, looping over short reads.

    Returns fewer than n bytes only if the stream hit EOF.
    """
    chunks: list[bytes] = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _parse_length(prefix: bytes) -> int:
    length: int = struct.unpack(FRAME_LENGTH_FORMAT, prefix)[0]
    if length < 0:
        raise InvalidFrameLength(f"Negative frame length: {length}")
    return length


# -------------------------
# Decoding
# -------------------------

def decode_frame(stream: ByteReader) -> bytes:
    """
    Decode one length-prefixed frame from a blocking byte stream.

    Raises:
        EndOfStream if no prefix bytes are left
        TruncatedFrame if the prefix or payload is incomplete
        InvalidFrameLength if the declared length is negative
    """
    prefix = read_fully(stream, FRAME_LENGTH_BYTES)
    if not prefix:
        raise EndOfStream("No more frames")
    if len(prefix) < FRAME_LENGTH_BYTES:
        raise TruncatedFrame(
            f"Frame prefix length {len(prefix)} != {FRAME_LENGTH_BYTES}"
        )

    length = _parse_length(prefix)
    payload = read_fully(stream, length)
    if len(payload) != length:
        raise TruncatedFrame(f"Frame payload length {len(payload)} != {length}")

    return payload


async def read_frame(source: AsyncByteSource) -> bytes:
    """
    Decode one length-prefixed frame from an asyncio byte source.

    Same contract as decode_frame().
    """
    try:
        prefix = await source.readexactly(FRAME_LENGTH_BYTES)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            raise EndOfStream("No more frames") from None
        raise TruncatedFrame(
            f"Frame prefix length {len(e.partial)} != {FRAME_LENGTH_BYTES}"
        ) from e

    length = _parse_length(prefix)
    try:
        return await source.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise TruncatedFrame(
            f"Frame payload length {len(e.partial)} != {length}"
        ) from e


# -------------------------
# Encoding
# -------------------------

def encode_frame(payload: bytes) -> bytes:
    """
    Encode one opus payload with its length prefix.
    """
    if len(payload) > MAX_FRAME_BYTES:
        raise InvalidFrameLength(
            f"Frame length {len(payload)} > {MAX_FRAME_BYTES}"
        )
    return struct.pack(FRAME_LENGTH_FORMAT, len(payload)) + payload


def encode_header(
    metadata: Mapping[str, Any],
    *,
    format_version: int = DEFAULT_FORMAT_VERSION,
) -> bytes:
    """
    Encode the container header: magic, version digit and JSON metadata.
    """
    if not 0 <= format_version <= 9:
        raise ValueError(f"format_version must be a single digit: {format_version}")

    body = json.dumps(dict(metadata), separators=(",", ":")).encode("utf-8")
    return (
        DCA_MAGIC
        + str(format_version).encode("ascii")
        + struct.pack(METADATA_LENGTH_FORMAT, len(body))
        + body
    )
