"""LLM client interfaces and provider implementations."""

from __future__ import annotations

from typing import Any

import structlog

from glimpse.config import LLMConfig, TranscriptionConfig
from glimpse.llm.backends import ChatBackend, HTTPChatBackend, SnapshotStream
from glimpse.llm.messages import ChatResponse, Message
from glimpse.llm.providers import AnthropicBackend, GeminiBackend, OllamaBackend, OpenAIBackend
from glimpse.llm.transcription import WhisperTranscriber

logger = structlog.get_logger(__name__)


def create_chat_backend(provider: str = "gemini", **kwargs: Any) -> HTTPChatBackend:
    p = (provider or "gemini").strip().lower()
    if p in {"gemini", "google", "default"}:
        return GeminiBackend(**kwargs)
    if p in {"openai"}:
        return OpenAIBackend(**kwargs)
    if p in {"anthropic"}:
        return AnthropicBackend(**kwargs)
    if p in {"ollama", "local"}:
        return OllamaBackend(**kwargs)
    raise ValueError(f"Unsupported provider: {provider}")


def build_chat_backend(config: LLMConfig) -> HTTPChatBackend | None:
    """Build the configured backend, or None when its credentials are missing."""
    provider = (config.provider or "gemini").strip().lower()
    kwargs: dict[str, Any] = {
        "timeout": float(config.timeout),
        "temperature": float(config.temperature),
        "max_tokens": int(config.max_tokens),
    }
    if config.model:
        kwargs["model"] = config.model
    if config.base_url:
        kwargs["base_url"] = config.base_url
    if provider in {"gemini", "google", "default"}:
        kwargs["api_key"] = config.gemini_api_key
    elif provider == "openai":
        kwargs["api_key"] = config.openai_api_key
    elif provider == "anthropic":
        kwargs["api_key"] = config.anthropic_api_key

    backend = create_chat_backend(provider=provider, **kwargs)
    if backend.requires_key and not backend.api_key:
        logger.warning("llm_backend_unavailable", provider=provider, missing=backend.api_key_env)
        return None
    logger.info("llm_backend_ready", provider=provider, model=backend.model)
    return backend


def build_transcriber(config: TranscriptionConfig) -> WhisperTranscriber | None:
    if not config.enabled:
        return None
    if not config.api_key:
        logger.warning("transcriber_unavailable", missing="OPENAI_API_KEY")
        return None
    return WhisperTranscriber(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        timeout=config.timeout,
    )


__all__ = [
    "ChatBackend",
    "HTTPChatBackend",
    "SnapshotStream",
    "GeminiBackend",
    "OpenAIBackend",
    "AnthropicBackend",
    "OllamaBackend",
    "WhisperTranscriber",
    "Message",
    "ChatResponse",
    "create_chat_backend",
    "build_chat_backend",
    "build_transcriber",
]
