"""Collaborator contracts for raw capture, OCR and speech-to-text."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from glimpse.types import AudioSegment


@runtime_checkable
class FrameSource(Protocol):
    """Returns one screen frame as an image data URL, or None when nothing is capturable."""

    async def capture_frame(self) -> str | None: ...


@runtime_checkable
class TextExtractor(Protocol):
    """OCR over an image data URL. May return "" when no text is found."""

    async def extract_text(self, image_data_url: str) -> str: ...


@runtime_checkable
class AudioSource(Protocol):
    async def record_segment(self) -> AudioSegment | None: ...


@runtime_checkable
class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> str: ...
