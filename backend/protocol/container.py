# backend/protocol/container.py
"""
DCA container decoder.

Accepts either a full container (header + metadata + frames) or a bare
frame stream, without the caller declaring which:

    decoder = ContainerDecoder(fh)
    for frame in decoder:
        ...
    decoder.metadata        # None for bare frame streams
    decoder.format_version  # 0 unless a header was seen

Header detection happens once, before the first frame. Reading the
metadata after that point would desync frame alignment, so it is refused
with NotFirstFrame.
"""

from __future__ import annotations

import json
import struct
from enum import Enum
from typing import Any, Iterator, Optional

from constants import (
    DCA_FINGERPRINT_BYTES,
    DCA_MAGIC,
    DCA_MAGIC_BYTES,
    DEFAULT_FORMAT_VERSION,
    METADATA_LENGTH_BYTES,
    METADATA_LENGTH_FORMAT,
)
from protocol.codec import (
    ByteReader,
    ContainerError,
    EndOfStream,
    decode_frame,
    read_fully,
)


# -------------------------
# Exceptions
# -------------------------

class NotDCA(ContainerError):
    """
    Raised when the stream does not start with the "DCA" magic.

    Either the input is not a DCA container or it is a bare frame stream.
    Nothing is consumed, so the caller may keep reading frames.
    """


class NotFirstFrame(ContainerError):
    """Raised when metadata is requested after header detection already ran."""


class TruncatedHeader(ContainerError):
    """Raised when the stream ends inside the container header."""


class InvalidFormatVersion(ContainerError, ValueError):
    """Raised when the version byte is not an ASCII digit."""


class InvalidMetadata(ContainerError, ValueError):
    """Raised when the metadata block is not a JSON object."""


class DecoderState(str, Enum):
    """Header detection progress."""
    AWAITING_HEADER_DECISION = "AWAITING_HEADER_DECISION"
    STREAMING_FRAMES = "STREAMING_FRAMES"


# -------------------------
# Peekable reader
# -------------------------

class PeekableReader:
    """
    Wraps a blocking byte stream with a lookahead buffer.

    Works for any object with read(n): files, BytesIO, pipes, sockets
    wrapped by makefile().
    """

    def __init__(self, stream: ByteReader) -> None:
        self._stream = stream
        self._pending = b""

    def peek(self, n: int) -> bytes:
        """
        Return up to n upcoming bytes without consuming them.

        Fewer than n bytes means the stream is exhausted.
        """
        if len(self._pending) < n:
            self._pending += read_fully(self._stream, n - len(self._pending))
        return self._pending[:n]

    def read(self, n: int = -1, /) -> bytes:
        if n < 0:
            data = self._pending + self._stream.read()
            self._pending = b""
            return data

        if self._pending:
            data = self._pending[:n]
            self._pending = self._pending[n:]
            return data

        return self._stream.read(n)


# -------------------------
# Decoder
# -------------------------

class ContainerDecoder:
    """
    Frame-by-frame decoder for DCA containers and bare frame streams.

    Not thread-safe; one caller at a time.
    """

    def __init__(self, stream: ByteReader) -> None:
        self._reader = PeekableReader(stream)
        self._state = DecoderState.AWAITING_HEADER_DECISION

        self.format_version: int = DEFAULT_FORMAT_VERSION
        self.metadata: Optional[dict[str, Any]] = None

    @property
    def state(self) -> DecoderState:
        return self._state

    @property
    def header_consumed(self) -> bool:
        """True once header detection has run (explicitly or implicitly)."""
        return self._state is DecoderState.STREAMING_FRAMES

    @property
    def stream(self) -> PeekableReader:
        """
        Underlying reader, positioned after the header once detection ran.
        """
        return self._reader

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def read_metadata(self) -> dict[str, Any]:
        """
        Parse the container header and return its metadata.

        Valid exactly once, before any frame is read. Header detection
        is considered done even if this raises.

        Raises:
            NotFirstFrame if detection already ran
            EndOfStream if the stream is empty
            NotDCA if the magic is missing (nothing consumed)
            InvalidFormatVersion if the version byte is not a digit
            TruncatedHeader if the stream ends inside the header
            json.JSONDecodeError if the metadata is not valid JSON
            InvalidMetadata if the metadata is not UTF-8 or not a JSON object
        """
        if self._state is not DecoderState.AWAITING_HEADER_DECISION:
            raise NotFirstFrame("Metadata can only be read before the first frame")
        self._state = DecoderState.STREAMING_FRAMES

        fingerprint = self._reader.peek(DCA_FINGERPRINT_BYTES)
        if not fingerprint:
            raise EndOfStream("Empty stream")

        if fingerprint[:DCA_MAGIC_BYTES] != DCA_MAGIC:
            raise NotDCA(
                "DCA magic header not found, either not dca or raw dca frames"
            )

        self._reader.read(len(fingerprint))
        if len(fingerprint) < DCA_FINGERPRINT_BYTES:
            raise TruncatedHeader("Missing format version")

        version = fingerprint[DCA_MAGIC_BYTES:]
        if not version.isdigit():
            raise InvalidFormatVersion(f"Invalid format version byte: {version!r}")
        self.format_version = int(version)

        raw_len = read_fully(self._reader, METADATA_LENGTH_BYTES)
        if len(raw_len) < METADATA_LENGTH_BYTES:
            raise TruncatedHeader(
                f"Metadata length field {len(raw_len)} != {METADATA_LENGTH_BYTES}"
            )

        meta_len: int = struct.unpack(METADATA_LENGTH_FORMAT, raw_len)[0]
        if meta_len < 0:
            raise InvalidMetadata(f"Negative metadata length: {meta_len}")

        body = read_fully(self._reader, meta_len)
        if len(body) < meta_len:
            raise TruncatedHeader(f"Metadata length {len(body)} != {meta_len}")

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidMetadata(f"Metadata is not valid UTF-8: {exc}") from exc

        metadata = json.loads(text)
        if not isinstance(metadata, dict):
            raise InvalidMetadata(
                f"Metadata must be a JSON object, got {type(metadata).__name__}"
            )

        self.metadata = metadata
        return metadata

    def detect_header(self) -> None:
        """
        Resolve whether a header is present, reading it if so.

        No-op once detection already ran.
        """
        if self._state is not DecoderState.AWAITING_HEADER_DECISION:
            return

        if self._reader.peek(DCA_MAGIC_BYTES) == DCA_MAGIC:
            self.read_metadata()
        else:
            self._state = DecoderState.STREAMING_FRAMES

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def next_frame(self) -> bytes:
        """
        Return the next opus frame.

        The first call also detects and parses an optional header.
        Raises EndOfStream when the stream is exhausted.
        """
        self.detect_header()
        return decode_frame(self._reader)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                yield self.next_frame()
            except EndOfStream:
                return
