"""
Encoder sources.

An encoder source is whatever produces raw length-prefixed opus frames for
a StreamingSession: a live transcoding pipeline, a socket, or a DCA file on
disk. The session only relies on the EncoderSource protocol:

- options:         EncodeOptions (frame duration, rate, channels)
- readexactly(n):  asyncio.StreamReader semantics
- truncate():      drop any buffered / undelivered data

Sources never retry; read failures surface to the delivery task.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from constants import (
    DEFAULT_CHANNELS,
    DEFAULT_FRAME_DURATION_MS,
    DEFAULT_FRAME_RATE_HZ,
)
from protocol.codec import read_fully
from protocol.container import ContainerDecoder


@dataclass(frozen=True)
class EncodeOptions:
    """
    Read-only encoder configuration visible to the streaming session.
    """
    frame_duration_ms: int = DEFAULT_FRAME_DURATION_MS
    frame_rate: int = DEFAULT_FRAME_RATE_HZ
    channels: int = DEFAULT_CHANNELS

    def __post_init__(self) -> None:
        if self.frame_duration_ms <= 0:
            raise ValueError("frame_duration_ms must be > 0")
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be > 0")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")

    @property
    def frame_duration(self) -> timedelta:
        return timedelta(milliseconds=self.frame_duration_ms)


class EncoderSource(Protocol):
    """Boundary contract consumed by StreamingSession."""

    @property
    def options(self) -> EncodeOptions: ...

    async def readexactly(self, n: int) -> bytes: ...

    def truncate(self) -> None: ...


# ---------------------------------------------------------------------
# Live byte stream
# ---------------------------------------------------------------------

class StreamEncoderSource:
    """
    Encoder source backed by an asyncio.StreamReader.

    Typical producers: a subprocess stdout pipe or an open connection.
    on_truncate lets the owner release whatever feeds the reader
    (kill the encoder process, close the socket).
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        *,
        options: EncodeOptions | None = None,
        on_truncate: Optional[Callable[[], None]] = None,
    ) -> None:
        self._reader = reader
        self._options = options or EncodeOptions()
        self._on_truncate = on_truncate
        self._truncated = False

    @property
    def options(self) -> EncodeOptions:
        return self._options

    @property
    def truncated(self) -> bool:
        return self._truncated

    async def readexactly(self, n: int) -> bytes:
        if self._truncated:
            raise asyncio.IncompleteReadError(b"", n)
        return await self._reader.readexactly(n)

    def truncate(self) -> None:
        """
        Stop serving data. Idempotent.
        """
        if self._truncated:
            return
        self._truncated = True
        if self._on_truncate is not None:
            self._on_truncate()


# ---------------------------------------------------------------------
# DCA file on disk
# ---------------------------------------------------------------------

class ContainerFileSource:
    """
    Encoder source that replays the frames of a DCA file.

    The header (if any) is skipped on the first read; the raw
    length-prefixed frame bytes are then served as-is. Blocking file
    reads run in a worker thread so the event loop stays responsive.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        options: EncodeOptions | None = None,
    ) -> None:
        self._path = Path(path)
        self._options = options or EncodeOptions()
        self._fh = self._path.open("rb")
        self._decoder = ContainerDecoder(self._fh)
        # Serializes worker-thread reads with close
        self._io_lock = threading.Lock()

    @property
    def options(self) -> EncodeOptions:
        return self._options

    @property
    def path(self) -> Path:
        return self._path

    @property
    def metadata(self) -> Optional[dict[str, Any]]:
        """Container metadata; None until the first read or if absent."""
        return self._decoder.metadata

    @property
    def format_version(self) -> int:
        return self._decoder.format_version

    @property
    def closed(self) -> bool:
        return self._fh.closed

    async def readexactly(self, n: int) -> bytes:
        data = await asyncio.to_thread(self._read_blocking, n)
        if len(data) < n:
            raise asyncio.IncompleteReadError(data, n)
        return data

    def _read_blocking(self, n: int) -> bytes:
        with self._io_lock:
            if self._fh.closed:
                return b""
            self._decoder.detect_header()
            return read_fully(self._decoder.stream, n)

    def truncate(self) -> None:
        """
        Close the file. Waits for a read still running in a worker thread,
        since cancelling the awaiting task does not stop that thread.
        """
        with self._io_lock:
            self._fh.close()
