"""Core data types shared across Glimpse subsystems."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from glimpse.utils import utcnow

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


def clamp_importance(value: int) -> int:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


@dataclass(frozen=True)
class MemoryEntry:
    """One remembered observation. Importance is clamped to [1, 10] on creation."""

    content: str
    importance: int
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "importance", clamp_importance(self.importance))

    def to_dict(self) -> dict[str, object]:
        return {
            "created_at": self.created_at.isoformat(),
            "content": self.content,
            "importance": self.importance,
        }


class StreamState(str, Enum):
    CREATED = "created"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (StreamState.DONE, StreamState.ERRORED)


@dataclass
class StreamSession:
    id: str
    query: str
    state: StreamState = StreamState.CREATED
    text: str = ""
    created_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None


class StreamEvent(BaseModel):
    """Wire shape for one streamed chat update. ``text`` is the full response so far."""

    stream_id: str
    text: str
    done: bool = False
    error: bool = False


@dataclass(frozen=True)
class InlineMedia:
    mime_type: str
    data: str  # base64 payload without the data-URL prefix

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class AudioSegment:
    data: bytes
    mime_type: str = "audio/webm"


class MemoryUpdate(BaseModel):
    """Pushed after every published memory change."""

    timestamp: datetime
    reason: str  # inserted | consolidated | cleared
    entries: int
    context: str
