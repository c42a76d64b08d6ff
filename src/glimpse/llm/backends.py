"""LLM backend abstraction layer."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any, Protocol, runtime_checkable

import httpx

from glimpse.exceptions import CollaboratorUnavailableError
from glimpse.llm.messages import ChatResponse, Message

# Each item is the full response generated so far, not a delta. Consumers
# replace what they display with every item; they never append.
SnapshotStream = AsyncIterator[str]


@runtime_checkable
class ChatBackend(Protocol):
    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse: ...

    def stream(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> SnapshotStream: ...

    @property
    def stats(self) -> dict[str, Any]: ...


class HTTPChatBackend:
    """Shared client plumbing for the HTTP providers.

    Subclasses implement ``chat`` and ``_stream_deltas``; ``stream`` turns
    the provider's incremental deltas into cumulative snapshots.
    """

    provider = "http"
    api_key_env = ""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str = "",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "streams": 0, "input_tokens": 0, "output_tokens": 0}

    @property
    def requires_key(self) -> bool:
        return bool(self.api_key_env)

    def _headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self.requires_key and not self.api_key:
            raise CollaboratorUnavailableError(f"{self.api_key_env} is required")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _temperature(self, value: float | None) -> float:
        return value if value is not None else self.temperature

    def _max_tokens(self, value: int | None) -> int:
        return value if value is not None else self.max_tokens

    def _count_usage(self, input_tokens: Any = 0, output_tokens: Any = 0) -> None:
        self._stats["input_tokens"] += int(input_tokens or 0)
        self._stats["output_tokens"] += int(output_tokens or 0)

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        raise NotImplementedError

    def _stream_deltas(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        raise NotImplementedError

    async def stream(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> SnapshotStream:
        self._stats["streams"] += 1
        full = ""
        deltas = self._stream_deltas(messages, temperature, max_tokens)
        try:
            async for delta in deltas:
                if not delta:
                    continue
                full += delta
                yield full
        finally:
            # Closes the provider response when the consumer stops early.
            await deltas.aclose()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "total_tokens": self._stats["input_tokens"] + self._stats["output_tokens"],
        }

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


async def iter_sse_data(resp: httpx.Response) -> AsyncIterator[str]:
    """Yield the ``data:`` payloads of a server-sent-events response."""
    async for line in resp.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if payload:
            yield payload
