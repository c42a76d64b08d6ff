"""Chat backend providers (Gemini, OpenAI, Anthropic, Ollama)."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import Any

from glimpse.llm.backends import HTTPChatBackend, iter_sse_data
from glimpse.llm.messages import ChatResponse, Message
from glimpse.utils import json_loads


def _split_system(messages: list[Message]) -> tuple[str, list[Message]]:
    system = ""
    rest: list[Message] = []
    for m in messages:
        if m.role == "system":
            system += m.content + "\n"
        else:
            rest.append(m)
    return system.strip(), rest


class GeminiBackend(HTTPChatBackend):
    provider = "gemini"
    api_key_env = "GEMINI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            api_key=api_key or os.environ.get("GEMINI_API_KEY", ""),
            model=model,
            base_url=base_url,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _body(self, messages: list[Message], temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        system, rest = _split_system(messages)
        contents: list[dict[str, Any]] = []
        for m in rest:
            parts: list[dict[str, Any]] = [{"text": m.content}] if m.content else []
            for media in m.media:
                parts.append({"inlineData": {"mimeType": media.mime_type, "data": media.data}})
            contents.append({"role": "model" if m.role == "assistant" else "user", "parts": parts})
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self._temperature(temperature),
                "maxOutputTokens": self._max_tokens(max_tokens),
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    @staticmethod
    def _candidate_text(data: dict[str, Any]) -> str:
        text = ""
        for cand in data.get("candidates", [])[:1]:
            for part in cand.get("content", {}).get("parts", []):
                if isinstance(part, dict):
                    text += str(part.get("text", ""))
        return text

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        client = await self._get_client()
        resp = await client.post(
            f"/models/{self.model}:generateContent",
            json=self._body(messages, temperature, max_tokens),
        )
        resp.raise_for_status()
        data = resp.json()
        usage = data.get("usageMetadata", {})
        self._stats["calls"] += 1
        self._count_usage(usage.get("promptTokenCount"), usage.get("candidatesTokenCount"))
        candidates = data.get("candidates", [])
        return ChatResponse(
            content=self._candidate_text(data),
            model=self.model,
            usage=usage,
            finish_reason=str(candidates[0].get("finishReason", "")) if candidates else "",
            raw=data,
        )

    async def _stream_deltas(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        client = await self._get_client()
        async with client.stream(
            "POST",
            f"/models/{self.model}:streamGenerateContent",
            params={"alt": "sse"},
            json=self._body(messages, temperature, max_tokens),
        ) as resp:
            resp.raise_for_status()
            async for payload in iter_sse_data(resp):
                yield self._candidate_text(json_loads(payload))


class OpenAIBackend(HTTPChatBackend):
    provider = "openai"
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4.1-mini",
        base_url: str = "https://api.openai.com/v1",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            api_key=api_key or os.environ.get("OPENAI_API_KEY", ""),
            model=model,
            base_url=base_url,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _message(m: Message) -> dict[str, Any]:
        images = [media for media in m.media if not media.is_video]
        if not images:
            return {"role": m.role, "content": m.content}
        content: list[dict[str, Any]] = [{"type": "text", "text": m.content}]
        for media in images:
            content.append({"type": "image_url", "image_url": {"url": media.to_data_url()}})
        return {"role": m.role, "content": content}

    def _body(self, messages: list[Message], temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [self._message(m) for m in messages],
            "temperature": self._temperature(temperature),
            "max_tokens": self._max_tokens(max_tokens),
        }

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        client = await self._get_client()
        resp = await client.post("/chat/completions", json=self._body(messages, temperature, max_tokens))
        resp.raise_for_status()
        data = resp.json()
        choice = data["choices"][0]
        usage = data.get("usage", {})
        self._stats["calls"] += 1
        self._count_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))
        return ChatResponse(
            content=str(choice["message"]["content"] or ""),
            model=str(data.get("model", self.model)),
            usage=usage,
            finish_reason=str(choice.get("finish_reason", "")),
            raw=data,
        )

    async def _stream_deltas(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        client = await self._get_client()
        body = {**self._body(messages, temperature, max_tokens), "stream": True}
        async with client.stream("POST", "/chat/completions", json=body) as resp:
            resp.raise_for_status()
            async for payload in iter_sse_data(resp):
                if payload == "[DONE]":
                    break
                data = json_loads(payload)
                for choice in data.get("choices", [])[:1]:
                    yield str(choice.get("delta", {}).get("content") or "")


class AnthropicBackend(HTTPChatBackend):
    provider = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-latest",
        base_url: str = "https://api.anthropic.com/v1",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", ""),
            model=model,
            base_url=base_url,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}

    def _body(self, messages: list[Message], temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        system, rest = _split_system(messages)
        chat_msgs: list[dict[str, Any]] = []
        for m in rest:
            role = "assistant" if m.role == "assistant" else "user"
            images = [media for media in m.media if not media.is_video]
            if not images:
                chat_msgs.append({"role": role, "content": m.content})
                continue
            blocks: list[dict[str, Any]] = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": media.mime_type, "data": media.data},
                }
                for media in images
            ]
            blocks.append({"type": "text", "text": m.content})
            chat_msgs.append({"role": role, "content": blocks})
        body: dict[str, Any] = {
            "model": self.model,
            "messages": chat_msgs,
            "temperature": self._temperature(temperature),
            "max_tokens": self._max_tokens(max_tokens),
        }
        if system:
            body["system"] = system
        return body

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        client = await self._get_client()
        resp = await client.post("/messages", json=self._body(messages, temperature, max_tokens))
        resp.raise_for_status()
        data = resp.json()
        text = ""
        for blk in data.get("content", []):
            if isinstance(blk, dict) and blk.get("type") == "text":
                text += str(blk.get("text", ""))
        usage = data.get("usage", {})
        self._stats["calls"] += 1
        self._count_usage(usage.get("input_tokens"), usage.get("output_tokens"))
        return ChatResponse(
            content=text,
            model=self.model,
            usage=usage,
            finish_reason=str(data.get("stop_reason", "")),
            raw=data,
        )

    async def _stream_deltas(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        client = await self._get_client()
        body = {**self._body(messages, temperature, max_tokens), "stream": True}
        async with client.stream("POST", "/messages", json=body) as resp:
            resp.raise_for_status()
            async for payload in iter_sse_data(resp):
                data = json_loads(payload)
                kind = data.get("type")
                if kind == "content_block_delta":
                    yield str(data.get("delta", {}).get("text", ""))
                elif kind == "message_stop":
                    break
                elif kind == "error":
                    raise RuntimeError(str(data.get("error", {}).get("message", "stream error")))


class OllamaBackend(HTTPChatBackend):
    provider = "ollama"

    def __init__(
        self,
        model: str = "llama3.1:8b-instruct",
        base_url: str = "http://127.0.0.1:11434",
        api_key: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key=api_key, model=model, base_url=base_url, **kwargs)

    def _body(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
        stream: bool,
    ) -> dict[str, Any]:
        msgs: list[dict[str, Any]] = []
        for m in messages:
            row: dict[str, Any] = {"role": m.role, "content": m.content}
            images = [media.data for media in m.media if not media.is_video]
            if images:
                row["images"] = images
            msgs.append(row)
        return {
            "model": self.model,
            "messages": msgs,
            "stream": stream,
            "options": {
                "temperature": self._temperature(temperature),
                "num_predict": self._max_tokens(max_tokens),
            },
        }

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        client = await self._get_client()
        resp = await client.post("/api/chat", json=self._body(messages, temperature, max_tokens, stream=False))
        resp.raise_for_status()
        data = resp.json()
        self._stats["calls"] += 1
        self._count_usage(data.get("prompt_eval_count"), data.get("eval_count"))
        return ChatResponse(
            content=str(data.get("message", {}).get("content", "")),
            model=self.model,
            finish_reason=str(data.get("done_reason", "")),
            raw=data,
        )

    async def _stream_deltas(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        client = await self._get_client()
        body = self._body(messages, temperature, max_tokens, stream=True)
        async with client.stream("POST", "/api/chat", json=body) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                data = json_loads(line)
                if data.get("error"):
                    raise RuntimeError(str(data["error"]))
                yield str(data.get("message", {}).get("content", ""))
                if data.get("done"):
                    break
