"""Rolling audio transcript context."""

from __future__ import annotations

import structlog

from glimpse.capture.scheduler import PeriodicTask
from glimpse.capture.sources import AudioSource, Transcriber
from glimpse.utils import trim

logger = structlog.get_logger(__name__)


class AudioContextSlot:
    """Most recent transcript; each completed segment overwrites the previous one."""

    def __init__(self) -> None:
        self._value = ""

    @property
    def value(self) -> str:
        return self._value

    def set(self, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        self._value = text
        return True

    def clear(self) -> None:
        self._value = ""

    def __call__(self) -> str:
        return self._value


class AudioSession(PeriodicTask):
    name = "audio"

    def __init__(
        self,
        slot: AudioContextSlot,
        transcriber: Transcriber | None,
        source: AudioSource | None = None,
        interval: float = 10.0,
    ) -> None:
        super().__init__(interval)
        self.slot = slot
        self.transcriber = transcriber
        self.source = source

    async def ingest(self, audio: bytes, mime_type: str = "audio/webm") -> str:
        """Transcribe one segment and overwrite the slot. Returns the transcript or ""."""
        if not audio:
            return ""
        if self.transcriber is None:
            logger.debug("audio_segment_skipped", reason="no_transcriber")
            return ""
        try:
            text = await self.transcriber.transcribe(audio, mime_type)
        except Exception as exc:
            logger.warning("transcription_failed", error=str(exc), bytes=len(audio))
            return ""
        if self.slot.set(text):
            logger.info("audio_transcript_updated", chars=len(self.slot.value), preview=trim(text, 80))
        return (text or "").strip()

    async def tick(self) -> str:
        if self.source is None:
            return ""
        try:
            segment = await self.source.record_segment()
        except Exception as exc:
            logger.warning("audio_capture_failed", error=str(exc))
            return ""
        if segment is None or not segment.data:
            return ""
        return await self.ingest(segment.data, segment.mime_type)
