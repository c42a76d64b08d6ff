"""Chat message and response containers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from glimpse.types import InlineMedia


@dataclass
class Message:
    role: str  # system | user | assistant
    content: str
    media: list[InlineMedia] = field(default_factory=list)


@dataclass
class ChatResponse:
    content: str
    model: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    finish_reason: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
