"""
Real-time frame streaming session.

Responsibilities:
- Own one background delivery task per active session
- Pull frames from an encoder source via the frame codec
- Hand each frame to the sink within a bounded delivery deadline
- Expose pause / resume / status controls safe to call from any thread

Non-responsibilities:
- NO retries (upstream failures are surfaced, not retried)
- NO pacing (the sink drains at real-time rate)
- NO ownership of the encoder process or transport

Lifecycle:
    IDLE -> RUNNING -> {PAUSED, FINISHED}
    PAUSED -> RUNNING
    FINISHED is terminal.
    stop() finishes from any state.

All flags (running, paused, finished, error, frames_sent) are guarded by a
single lock. The lock is never held across the decode or the sink handoff.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import timedelta
from typing import Any, Optional, Protocol
from uuid import uuid4

from constants import SINK_DELIVERY_TIMEOUT_MS
from observability.logger import log_event, now_ms
from protocol.codec import EndOfStream, read_frame
from streaming.sources import EncoderSource
from streaming.transitions import (
    PauseAction,
    SessionFlags,
    SessionState,
    decide_pause,
    derive_state,
)


# -------------------------
# Exceptions
# -------------------------

class StreamingError(Exception):
    """Base class for errors that finish a streaming session."""


class SinkTimeout(StreamingError):
    """
    Raised when the sink did not accept a frame within the delivery deadline.

    A stalled or closed consumer; the session stops delivering.
    """


class DoubleStartError(RuntimeError):
    """
    Raised when a delivery task is launched while one is already running.

    Two readers on one encoder source would interleave frames. This is a
    caller-side invariant violation, never an expected runtime condition.
    """


class FrameSink(Protocol):
    """Consumer side of the handoff. asyncio.Queue satisfies this."""

    async def put(self, frame: bytes) -> None: ...


def _new_session_id() -> str:
    return f"stream_{uuid4().hex[:12]}"


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------

class StreamingSession:
    """
    Streams opus frames from an encoder source to a sink.

    Prefer stream_from_source() which creates and starts the session.
    """

    def __init__(
        self,
        source: EncoderSource,
        sink: FrameSink,
        *,
        delivery_timeout_s: float = SINK_DELIVERY_TIMEOUT_MS / 1000.0,
        session_id: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if delivery_timeout_s <= 0:
            raise ValueError("delivery_timeout_s must be > 0")

        self.session_id = session_id or _new_session_id()

        self._source = source
        self._sink = sink
        self._delivery_timeout_s = delivery_timeout_s
        self._loop = loop

        self._lock = threading.Lock()
        self._running = False
        self._paused = False
        self._finished = False
        self._err: Optional[BaseException] = None
        self._frames_sent = 0

        self._task: Optional[asyncio.Task[None]] = None
        self._finished_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Control plane
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Launch the delivery task.

        No-op once finished. Raises DoubleStartError if a task is running.
        """
        with self._lock:
            if self._finished:
                return
            self._launch_locked()

    def set_paused(self, paused: bool) -> PauseAction:
        """
        Pause or resume delivery.

        Pausing never interrupts an in-flight decode or handoff; the task
        stops before its next frame. Resuming after the task stopped
        launches a new one that continues from the next undelivered frame.
        """
        with self._lock:
            flags, action = decide_pause(self._flags_locked(), paused)
            self._paused = flags.paused
            if action is PauseAction.SPAWN:
                self._launch_locked()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_PAUSE_DECISION",
            "session_id": self.session_id,
            "requested_paused": paused,
            "action": action.value,
        })
        return action

    async def wait(self) -> tuple[bool, Optional[BaseException]]:
        """
        Wait for the current delivery task (if any) to exit.

        Returns finished_status().
        """
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)
        return self.finished_status()

    async def wait_finished(self) -> tuple[bool, Optional[BaseException]]:
        """
        Wait until the session reaches FINISHED, across pauses and resumes.
        """
        await self._finished_event.wait()
        return self.finished_status()

    async def stop(self) -> None:
        """
        Finish the session and cancel the current delivery task.

        Used on transport teardown. Stopping is final: a frame cut off
        mid-read is never resumed from the middle, and later set_paused
        calls are no-ops. The source is truncated once no task reads it.
        """
        with self._lock:
            if self._finished:
                return
            self._finished = True
            running = self._running
            task = self._task

        self._finished_event.set()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_STOPPED",
            "session_id": self.session_id,
            "frames_sent": self.frames_sent,
        })

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif running:
            # A resume from another thread is still scheduling the task;
            # it sees finished and truncates.
            return

        self._source.truncate()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def playback_position(self) -> timedelta:
        """Duration of audio handed to the sink so far."""
        with self._lock:
            frames = self._frames_sent
        return frames * self._source.options.frame_duration

    def finished_status(self) -> tuple[bool, Optional[BaseException]]:
        """
        (finished, error). error is None for a clean end of stream.
        """
        with self._lock:
            return self._finished, self._err

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def frames_sent(self) -> int:
        with self._lock:
            return self._frames_sent

    @property
    def state(self) -> SessionState:
        with self._lock:
            return derive_state(self._flags_locked())

    def snapshot(self) -> dict[str, Any]:
        """
        Lightweight snapshot for logging / status messages.
        """
        with self._lock:
            flags = self._flags_locked()
            frames = self._frames_sent
            err = self._err

        position = frames * self._source.options.frame_duration
        return {
            "session_id": self.session_id,
            "state": derive_state(flags).value,
            "paused": flags.paused,
            "finished": flags.finished,
            "error": f"{type(err).__name__}: {err}" if err else None,
            "frames_sent": frames,
            "position_ms": int(position / timedelta(milliseconds=1)),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _flags_locked(self) -> SessionFlags:
        return SessionFlags(
            running=self._running,
            paused=self._paused,
            finished=self._finished,
        )

    def _launch_locked(self) -> None:
        """
        Mark running and schedule a delivery task. Caller holds the lock.

        running is set here rather than inside the task so that a
        pause/resume pair issued before the task is scheduled cannot
        launch a second reader.
        """
        if self._running:
            raise DoubleStartError(f"Stream {self.session_id} is already running")

        loop = self._loop
        if loop is None:
            loop = self._loop = asyncio.get_running_loop()

        self._running = True

        if _on_loop(loop):
            self._create_task(loop)
        else:
            loop.call_soon_threadsafe(self._create_task, loop)

    def _create_task(self, loop: asyncio.AbstractEventLoop) -> None:
        self._task = loop.create_task(self._deliver())

    async def _deliver(self) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_TASK_STARTED",
            "session_id": self.session_id,
        })

        try:
            while True:
                with self._lock:
                    finished = self._finished
                    paused = self._paused

                if finished:
                    # Stopped before this task got scheduled
                    self._source.truncate()
                    break
                if paused:
                    break

                try:
                    await self._send_next()
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    self._finish(exc)
                    break

        finally:
            with self._lock:
                self._running = False

            log_event({
                "ts_ms": now_ms(),
                "event_type": "STREAM_TASK_STOPPED",
                "session_id": self.session_id,
                "frames_sent": self.frames_sent,
            })

    async def _send_next(self) -> None:
        frame = await read_frame(self._source)

        try:
            await asyncio.wait_for(
                self._sink.put(frame),
                timeout=self._delivery_timeout_s,
            )
        except asyncio.TimeoutError:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "STREAM_SINK_TIMEOUT",
                "session_id": self.session_id,
                "timeout_s": self._delivery_timeout_s,
            })
            raise SinkTimeout(
                f"Sink did not accept frame within {self._delivery_timeout_s}s"
            ) from None

        with self._lock:
            self._frames_sent += 1

    def _finish(self, exc: BaseException) -> None:
        with self._lock:
            self._finished = True
            if not isinstance(exc, EndOfStream):
                self._err = exc

        self._finished_event.set()

        # Release anything the encoder still buffers
        self._source.truncate()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_FINISHED",
            "session_id": self.session_id,
            "error": None if isinstance(exc, EndOfStream) else f"{type(exc).__name__}: {exc}",
            "frames_sent": self.frames_sent,
        })


def stream_from_source(
    source: EncoderSource,
    sink: FrameSink,
    *,
    delivery_timeout_s: float = SINK_DELIVERY_TIMEOUT_MS / 1000.0,
    session_id: str | None = None,
) -> StreamingSession:
    """
    Create a session bound to the running event loop and start delivering.
    """
    session = StreamingSession(
        source,
        sink,
        delivery_timeout_s=delivery_timeout_s,
        session_id=session_id,
        loop=asyncio.get_running_loop(),
    )
    session.start()
    return session
