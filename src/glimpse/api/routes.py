"""FastAPI HTTP + WebSocket API for Glimpse."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from glimpse import __version__
from glimpse.assistant import Assistant
from glimpse.config import Config
from glimpse.exceptions import DuplicateStreamError, InvalidMediaError
from glimpse.utils import parse_data_url

logger = structlog.get_logger(__name__)


# --- Request/Response Models ---

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    screen_text: str | None = None
    image_data_url: str | None = None
    stream_id: str | None = Field(default=None, min_length=1, max_length=128)


class ChatSubmitResponse(BaseModel):
    stream_id: str


class MemoryContextResponse(BaseModel):
    context: str


class MemoryEntryItem(BaseModel):
    created_at: str
    content: str
    importance: int


class MemoryEntriesResponse(BaseModel):
    entries: list[MemoryEntryItem]
    count: int


class TranscriptResponse(BaseModel):
    text: str


class CaptureStatusResponse(BaseModel):
    running: bool
    detail: str = ""


# --- App factory ---

_assistant: Assistant | None = None


def get_assistant() -> Assistant:
    if _assistant is None:
        raise HTTPException(status_code=500, detail="Assistant not initialized")
    return _assistant


def _entries_response(assistant: Assistant) -> MemoryEntriesResponse:
    entries = assistant.get_raw_entries()
    return MemoryEntriesResponse(
        entries=[MemoryEntryItem(**e.to_dict()) for e in entries],
        count=len(entries),
    )


def _bounded_put(queue: asyncio.Queue[BaseModel]) -> Callable[[BaseModel], None]:
    """Enqueue for a WebSocket client, dropping its oldest event when the client falls behind."""

    def put(event: BaseModel) -> None:
        if queue.full():
            queue.get_nowait()
            logger.warning("events_client_lagging", dropped=1, maxsize=queue.maxsize)
        queue.put_nowait(event)

    return put


async def _relay(
    websocket: WebSocket,
    token: str,
    subscribe: Callable[[Callable[[BaseModel], None]], Callable[[], None]],
    maxsize: int,
) -> None:
    """Push each event from ``subscribe`` to the client as one JSON message until it disconnects."""
    if token and websocket.query_params.get("token", "") != token:
        await websocket.close(code=1008, reason="Unauthorized")
        return
    queue: asyncio.Queue[BaseModel] = asyncio.Queue(maxsize=max(1, maxsize))
    unsubscribe = subscribe(_bounded_put(queue))

    async def pump() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump(mode="json"))

    sender: asyncio.Task[None] | None = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(pump())
        logger.info("events_client_connected", path=websocket.url.path)
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except (asyncio.CancelledError, RuntimeError, WebSocketDisconnect):
                pass
        logger.info("events_client_disconnected", path=websocket.url.path)


def create_app(config: Config | None = None, assistant: Assistant | None = None) -> FastAPI:
    global _assistant
    config = config or (assistant.config if assistant is not None else Config())
    _assistant = assistant or Assistant(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await get_assistant().start()
        try:
            yield
        finally:
            await get_assistant().stop()

    app = FastAPI(
        title="Glimpse API",
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Bearer token auth middleware
    token = config.api.bearer_token

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        if request.url.path in ("/api/v1/health", "/docs", "/openapi.json"):
            return await call_next(request)
        if token:
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != token:
                return ORJSONResponse({"detail": "Unauthorized"}, status_code=401)
        return await call_next(request)

    # --- Routes ---

    @app.get("/api/v1/health")
    async def health():
        return {"status": "ok", "service": "glimpse"}

    @app.get("/api/v1/status")
    async def get_status(assistant: Assistant = Depends(get_assistant)) -> dict[str, Any]:
        return assistant.status()

    @app.post("/api/v1/chat", response_model=ChatSubmitResponse)
    async def chat_submit(req: ChatRequest, assistant: Assistant = Depends(get_assistant)):
        if req.image_data_url:
            try:
                parse_data_url(req.image_data_url)
            except InvalidMediaError as e:
                raise HTTPException(status_code=422, detail=str(e))
        try:
            stream_id = await assistant.submit_query(
                req.message,
                live_screen_text=req.screen_text,
                live_image=req.image_data_url,
                stream_id=req.stream_id,
            )
        except DuplicateStreamError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return ChatSubmitResponse(stream_id=stream_id)

    @app.websocket("/api/v1/chat/events")
    async def chat_events(websocket: WebSocket):
        """Push every stream event, for all streams, as one JSON object per message.

        Clients keep their own active stream id and ignore the rest.
        """
        await _relay(websocket, token, get_assistant().subscribe, config.api.event_queue_size)

    @app.get("/api/v1/memory/context", response_model=MemoryContextResponse)
    async def memory_context(assistant: Assistant = Depends(get_assistant)):
        return MemoryContextResponse(context=assistant.get_memory_context())

    @app.delete("/api/v1/memory")
    async def memory_clear(assistant: Assistant = Depends(get_assistant)):
        await assistant.clear_memory()
        return {"cleared": True}

    @app.post("/api/v1/audio/transcribe", response_model=TranscriptResponse)
    async def audio_transcribe(request: Request, assistant: Assistant = Depends(get_assistant)):
        body = await request.body()
        if not body:
            raise HTTPException(status_code=422, detail="Empty audio payload")
        mime_type = request.headers.get("content-type", "audio/wav")
        text = await assistant.ingest_audio(body, mime_type)
        return TranscriptResponse(text=text)

    @app.get("/api/v1/audio/transcript", response_model=TranscriptResponse)
    async def audio_transcript(assistant: Assistant = Depends(get_assistant)):
        return TranscriptResponse(text=assistant.audio_transcript)

    # --- Debug-only routes ---

    if config.debug:

        @app.post("/api/v1/debug/capture/start", response_model=CaptureStatusResponse)
        async def debug_capture_start(assistant: Assistant = Depends(get_assistant)):
            started = assistant.start_capture()
            return CaptureStatusResponse(
                running=assistant.capture_running,
                detail="Memory capture started" if started else "Memory capture not started",
            )

        @app.post("/api/v1/debug/capture/stop", response_model=CaptureStatusResponse)
        async def debug_capture_stop(assistant: Assistant = Depends(get_assistant)):
            await assistant.stop_capture()
            return CaptureStatusResponse(running=False, detail="Memory capture stopped")

        @app.get("/api/v1/debug/memory/entries", response_model=MemoryEntriesResponse)
        async def debug_memory_entries(assistant: Assistant = Depends(get_assistant)):
            return _entries_response(assistant)

        @app.post("/api/v1/debug/memory/consolidate", response_model=MemoryEntriesResponse)
        async def debug_memory_consolidate(assistant: Assistant = Depends(get_assistant)):
            await assistant.consolidate_now()
            return _entries_response(assistant)

        @app.websocket("/api/v1/debug/memory/events")
        async def debug_memory_events(websocket: WebSocket):
            """Push a MemoryUpdate after every insert, consolidation or clear."""
            await _relay(websocket, token, get_assistant().subscribe_memory, config.api.event_queue_size)

    return app
