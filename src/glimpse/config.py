"""Glimpse configuration."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


class MemoryConfig(BaseModel):
    max_entries: int = 50
    recent_window: int = 5
    duplicate_threshold: float = 0.8
    default_importance: int = 5
    consolidated_importance: int = 8
    render_min_importance: int = 6
    render_recent_minutes: float = 5.0
    render_limit: int = 10


class CaptureConfig(BaseModel):
    enabled: bool = True
    autostart: bool = False
    capture_interval: float = 5.0
    audio_interval: float = 10.0
    capture_on_query: bool = True


class LLMConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("GLIMPSE_LLM_PROVIDER", "gemini"))
    model: str = Field(default_factory=lambda: os.environ.get("GLIMPSE_LLM_MODEL", ""))
    gemini_api_key: str = Field(default_factory=lambda: os.environ.get("GEMINI_API_KEY", ""))
    openai_api_key: str = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    anthropic_api_key: str = Field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", ""))
    base_url: str = ""
    timeout: float = 120.0
    temperature: float = 0.3
    max_tokens: int = 2048
    importance_max_tokens: int = 8
    consolidation_max_tokens: int = 1024


class TranscriptionConfig(BaseModel):
    enabled: bool = True
    api_key: str = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    model: str = "whisper-1"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 60.0


class APIConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8765
    bearer_token: str = Field(default_factory=lambda: os.environ.get("GLIMPSE_API_TOKEN", ""))
    event_queue_size: int = 256  # per WebSocket client; oldest events dropped when full


class LoggingConfig(BaseModel):
    level: str = Field(default_factory=lambda: os.environ.get("GLIMPSE_LOG_LEVEL", "INFO"))
    format: str = Field(default_factory=lambda: os.environ.get("GLIMPSE_LOG_FORMAT", "console"))  # console | json


class Config(BaseModel):
    debug: bool = Field(default_factory=lambda: _env_flag("GLIMPSE_DEBUG"))
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
