"""Speech-to-text adapter over the OpenAI transcription endpoint."""

from __future__ import annotations

import os
from typing import Any

import httpx

from glimpse.exceptions import CollaboratorUnavailableError

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/ogg": "ogg",
}


def _filename_for(mime_type: str) -> str:
    base = (mime_type or "audio/wav").split(";")[0].strip().lower()
    return f"segment.{_EXTENSIONS.get(base, 'wav')}"


class WhisperTranscriber:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "bytes": 0}

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise CollaboratorUnavailableError("OPENAI_API_KEY is required for transcription")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        if not audio:
            return ""
        client = await self._get_client()
        content_type = (mime_type or "audio/wav").split(";")[0].strip()
        resp = await client.post(
            "/audio/transcriptions",
            data={"model": self.model},
            files={"file": (_filename_for(mime_type), audio, content_type)},
        )
        resp.raise_for_status()
        self._stats["calls"] += 1
        self._stats["bytes"] += len(audio)
        return str(resp.json().get("text", ""))

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
