"""Assistant: owns memory, producers and the chat dispatcher for one session."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from glimpse.capture.audio import AudioContextSlot, AudioSession
from glimpse.capture.scheduler import CaptureScheduler
from glimpse.capture.sources import AudioSource, FrameSource, TextExtractor, Transcriber
from glimpse.chat.dispatcher import StreamDispatcher, Subscriber
from glimpse.config import Config
from glimpse.llm import build_chat_backend, build_transcriber
from glimpse.llm.backends import ChatBackend
from glimpse.memory.consolidator import Consolidator
from glimpse.memory.importance import ImportanceAssessor
from glimpse.memory.store import MemoryListener, MemoryStore
from glimpse.types import MemoryEntry
from glimpse.utils import utcnow

logger = structlog.get_logger(__name__)


class Assistant:
    """Central orchestrator wiring collaborators into memory and chat.

    Collaborators are injected; when ``auto_backends`` is set, a missing chat
    backend or transcriber is built from the config (and left as None when
    its credentials are absent, which degrades the feature).
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        chat: ChatBackend | None = None,
        frames: FrameSource | None = None,
        extractor: TextExtractor | None = None,
        audio_source: AudioSource | None = None,
        transcriber: Transcriber | None = None,
        auto_backends: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or Config()
        if chat is None and auto_backends:
            chat = build_chat_backend(self.config.llm)
        if transcriber is None and auto_backends:
            transcriber = build_transcriber(self.config.transcription)
        self.chat = chat
        self.transcriber = transcriber

        mem_cfg = self.config.memory
        self.audio = AudioContextSlot()
        self.assessor = ImportanceAssessor(
            chat,
            default=mem_cfg.default_importance,
            max_tokens=self.config.llm.importance_max_tokens,
        )
        self.consolidator = Consolidator(
            chat,
            max_entries=mem_cfg.max_entries,
            importance=mem_cfg.consolidated_importance,
            max_tokens=self.config.llm.consolidation_max_tokens,
            clock=clock,
        )
        self.memory = MemoryStore(
            self.assessor,
            self.consolidator,
            config=mem_cfg,
            audio_context=self.audio,
            clock=clock,
        )
        self.dispatcher = StreamDispatcher(chat, memory=self.memory, audio_context=self.audio)

        self.capture: CaptureScheduler | None = None
        if frames is not None and extractor is not None:
            self.capture = CaptureScheduler(
                self.memory, frames, extractor, interval=self.config.capture.capture_interval
            )
        self.audio_session = AudioSession(
            self.audio,
            transcriber,
            source=audio_source,
            interval=self.config.capture.audio_interval,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.config.capture.autostart:
            self.start_capture()
        if self.audio_session.source is not None and self.transcriber is not None:
            self.audio_session.start()
        logger.info(
            "assistant_started",
            chat=self.chat is not None,
            capture=self.capture is not None,
            transcriber=self.transcriber is not None,
        )

    async def stop(self) -> None:
        await self.stop_capture()
        await self.audio_session.stop()
        await self.dispatcher.aclose()
        for obj in (self.chat, self.transcriber):
            close_fn = getattr(obj, "close", None)
            if close_fn is None:
                continue
            maybe = close_fn()
            if inspect.isawaitable(maybe):
                await maybe
        logger.info("assistant_stopped")

    async def __aenter__(self) -> "Assistant":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    # --- Chat ---

    async def submit_query(
        self,
        message: str,
        live_screen_text: str | None = None,
        live_image: str | None = None,
        stream_id: str | None = None,
    ) -> str:
        """Submit a chat query and return its stream id.

        Without a live snapshot from the caller, one frame is grabbed and
        OCR'd (when capture collaborators exist); its text also goes to memory.
        """
        if (
            live_screen_text is None
            and live_image is None
            and self.capture is not None
            and self.config.capture.capture_on_query
        ):
            frame, text = await self.capture.snapshot()
            if text:
                await self.memory.add_observation(text)
            live_screen_text = text
            live_image = frame or None
        return await self.dispatcher.submit(message, live_screen_text, live_image, stream_id=stream_id)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.dispatcher.subscribe(callback)

    def subscribe_memory(self, callback: MemoryListener) -> Callable[[], None]:
        return self.memory.subscribe(callback)

    # --- Memory ---

    def get_memory_context(self) -> str:
        return self.memory.render_context()

    async def clear_memory(self) -> None:
        await self.memory.clear()

    def get_raw_entries(self) -> list[MemoryEntry]:
        return self.memory.entries()

    async def consolidate_now(self) -> list[MemoryEntry]:
        return await self.memory.consolidate_now()

    # --- Audio ---

    async def ingest_audio(self, audio: bytes, mime_type: str = "audio/webm") -> str:
        return await self.audio_session.ingest(audio, mime_type)

    @property
    def audio_transcript(self) -> str:
        return self.audio.value

    # --- Capture ---

    def start_capture(self) -> bool:
        if self.capture is None:
            logger.warning("capture_unavailable", reason="no frame source or text extractor")
            return False
        if not self.config.capture.enabled:
            logger.info("capture_disabled")
            return False
        return self.capture.start()

    async def stop_capture(self) -> None:
        if self.capture is not None:
            await self.capture.stop()

    @property
    def capture_running(self) -> bool:
        return self.capture is not None and self.capture.running

    def status(self) -> dict[str, Any]:
        return {
            "entries": len(self.memory),
            "capture_running": self.capture_running,
            "audio_running": self.audio_session.running,
            "has_audio_transcript": bool(self.audio.value),
            "current_stream_id": self.dispatcher.current_id,
            "chat_backend": self.chat is not None,
            "transcriber": self.transcriber is not None,
        }
