"""Starlette ASGI app streaming diagrams over WebSocket.

Wire protocol on ``/ws`` (JSON text frames ``{"event": ..., "data": ...}``):

- client -> server ``join-session``: data is the session id.
- server -> client ``uml_update``: data is the full PlantUML text.
- server -> client ``error``: data is ``{"message": str}``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any, AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from .broadcaster import JOIN_SESSION, SessionBroadcaster
from .config import Settings
from .pipeline import RecomputationPipeline
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the broadcaster's connection interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_text(json.dumps({"event": event, "data": data}))


def handle_frame(broadcaster: SessionBroadcaster, conn_id: str, raw: str) -> bool:
    """Apply one inbound frame; returns False if it was ignored."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON frame from %s", conn_id)
        return False
    if not isinstance(message, dict):
        logger.debug("Ignoring non-object frame from %s", conn_id)
        return False

    event = message.get("event")
    if event == JOIN_SESSION:
        return broadcaster.join(conn_id, message.get("data"))
    logger.debug("Ignoring unknown event %r from %s", event, conn_id)
    return False


def create_app(settings: Settings) -> Starlette:
    """Create the Starlette application for *settings*."""

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        broadcaster = SessionBroadcaster()
        pipeline = RecomputationPipeline(
            settings.root,
            settings.descriptor,
            broadcaster,
            coalesce=settings.coalesce,
        )
        app.state.broadcaster = broadcaster
        app.state.pipeline = pipeline

        loop = asyncio.get_running_loop()
        watcher: Optional[ChangeWatcher] = None
        if settings.watch:
            watcher = ChangeWatcher(
                settings.root,
                lambda path: loop.call_soon_threadsafe(pipeline.on_file_changed, path),
            )
            watcher.start()

        consumer = asyncio.create_task(pipeline.run())
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer

    async def uml_socket(websocket: WebSocket) -> None:
        pipeline: RecomputationPipeline = websocket.app.state.pipeline
        broadcaster = pipeline.broadcaster

        await websocket.accept()
        conn = WebSocketConnection(websocket)
        try:
            await pipeline.attach(conn)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is not None:
                    handle_frame(broadcaster, conn.id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.disconnect(conn.id)

    async def health(request: Request) -> PlainTextResponse:
        return PlainTextResponse("OK")

    async def api_diagram(request: Request) -> JSONResponse:
        pipeline: RecomputationPipeline = request.app.state.pipeline
        return JSONResponse({
            "diagram": pipeline.snapshot.get(),
            "version": pipeline.snapshot.version,
            "failures": [{"path": f.path, "reason": f.reason} for f in pipeline.last_failures],
        })

    async def api_recompute(request: Request) -> JSONResponse:
        pipeline: RecomputationPipeline = request.app.state.pipeline
        pipeline.trigger("api request")
        return JSONResponse({"queued": True}, status_code=202)

    async def api_emit(request: Request) -> JSONResponse:
        broadcaster: SessionBroadcaster = request.app.state.broadcaster
        session_id = request.path_params["session_id"]
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Body must be JSON"}, status_code=400)
        if not isinstance(body, dict) or not isinstance(body.get("event"), str):
            return JSONResponse({"error": "Body must contain an 'event' string"}, status_code=400)
        delivered = await broadcaster.emit_to_session(session_id, body["event"], body.get("data"))
        return JSONResponse({"delivered": delivered})

    return Starlette(
        routes=[
            Route("/health", health),
            Route("/api/diagram", api_diagram),
            Route("/api/recompute", api_recompute, methods=["POST"]),
            Route("/api/sessions/{session_id}/emit", api_emit, methods=["POST"]),
            WebSocketRoute("/ws", uml_socket),
        ],
        middleware=[Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"])],
        lifespan=lifespan,
    )


def serve(settings: Settings) -> None:
    """Run the app under uvicorn until interrupted."""
    import uvicorn

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="warning")
