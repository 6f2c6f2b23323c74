"""
Route registration for the DCA streaming API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire a StreamingSession to the WebSocket lifecycle
- Translate JSON control messages into pause / resume / status calls

Protocol on /ws/play/{name}:
- Server → Client binary: one opus frame per message
- Client → Server text:   {"type": "PAUSE" | "RESUME" | "STATUS"}
- Server → Client text:   {"type": "STATUS", ...snapshot}
                          {"type": "STREAM_END", ...snapshot}
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import AppConfig
from constants import WS_CLOSE_UNKNOWN_MEDIA
from observability.logger import log_event, now_ms
from streaming.session import StreamingSession, stream_from_source
from streaming.sources import ContainerFileSource, EncodeOptions


class WebSocketSink:
    """
    Frame sink that forwards each frame as one binary WebSocket message.
    """

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws

    async def put(self, frame: bytes) -> None:
        await self._ws.send_bytes(frame)


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket("/ws/play/{name}")
    async def play(ws: WebSocket, name: str) -> None: # pyright: ignore[reportUnusedFunction]
        config: AppConfig = app.state.config

        await ws.accept()

        path = resolve_media_path(config.media_dir, name)
        if path is None:
            await ws.close(code=WS_CLOSE_UNKNOWN_MEDIA)
            return

        source = ContainerFileSource(
            path,
            options=EncodeOptions(frame_duration_ms=config.frame_duration_ms),
        )
        session = stream_from_source(
            source,
            WebSocketSink(ws),
            delivery_timeout_s=config.sink_timeout_s,
        )

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_PLAY_STARTED",
            "session_id": session.session_id,
            "media": name,
        })

        announcer = asyncio.create_task(_announce_end(ws, session))

        try:
            while True:
                raw = await ws.receive_text()
                await ws.send_text(json.dumps(handle_control(session, raw)))

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "session_id": session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            announcer.cancel()
            try:
                await announcer
            except asyncio.CancelledError:
                pass
            # Cancels delivery and truncates the source
            await session.stop()


def resolve_media_path(media_dir: str, name: str) -> Optional[Path]:
    """
    Map a media name to a file inside media_dir.

    Returns None for missing files and for names escaping media_dir.
    """
    base = Path(media_dir).resolve()
    path = (base / name).resolve()
    if base not in path.parents or not path.is_file():
        return None
    return path


def handle_control(session: StreamingSession, raw: str) -> dict[str, Any]:
    """
    Apply one JSON control message and return the reply payload.
    """
    try:
        msg = json.loads(raw)
        kind = msg["type"]
    except (json.JSONDecodeError, KeyError, TypeError):
        return {"type": "ERROR", "reason": "invalid_control_message"}

    if kind == "PAUSE":
        session.set_paused(True)
    elif kind == "RESUME":
        session.set_paused(False)
    elif kind != "STATUS":
        return {"type": "ERROR", "reason": f"unknown_control_type: {kind}"}

    return {"type": "STATUS", **session.snapshot()}


async def _announce_end(ws: WebSocket, session: StreamingSession) -> None:
    await session.wait_finished()
    try:
        await ws.send_text(json.dumps({"type": "STREAM_END", **session.snapshot()}))
    except (WebSocketDisconnect, RuntimeError):
        # Client already gone
        pass
