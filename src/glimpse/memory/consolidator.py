"""Collapse an over-full memory into fewer, higher-value entries."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from datetime import datetime

import structlog

from glimpse.llm.backends import ChatBackend
from glimpse.llm.messages import Message
from glimpse.types import MemoryEntry
from glimpse.utils import utcnow

logger = structlog.get_logger(__name__)

CONSOLIDATED_IMPORTANCE = 8

CONSOLIDATION_PROMPT = """Consolidate this technical session memory into one concise summary.
Keep what matters for helping the user right now:
- Code and algorithms being worked on
- Technical problems and their solutions
- Important changes and decisions
- Interview or meeting context

Return only the summary text."""


def render_transcript(entries: Sequence[MemoryEntry]) -> str:
    return "\n".join(
        f"[{e.created_at.isoformat(timespec='seconds')}] (importance {e.importance}) {e.content}"
        for e in entries
    )


def keep_top(entries: Sequence[MemoryEntry], keep: int) -> list[MemoryEntry]:
    """Keep the ``keep`` entries ranked highest by (importance, created_at), oldest first."""
    if keep <= 0:
        return []
    ranked = sorted(
        enumerate(entries),
        key=lambda pair: (pair[1].importance, pair[1].created_at, pair[0]),
        reverse=True,
    )[:keep]
    return [e for _, e in sorted(ranked, key=lambda pair: pair[0])]


class Consolidator:
    """Summarize entries through the chat backend, falling back to a sort-and-truncate."""

    def __init__(
        self,
        chat: ChatBackend | None,
        max_entries: int = 50,
        importance: int = CONSOLIDATED_IMPORTANCE,
        max_tokens: int = 1024,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.chat = chat
        self.max_entries = max(1, int(max_entries))
        self.importance = importance
        self.max_tokens = max_tokens
        self.clock = clock
        self._warned_unavailable = False

    @property
    def fallback_size(self) -> int:
        return math.ceil(self.max_entries / 2)

    def fallback(self, entries: Sequence[MemoryEntry]) -> list[MemoryEntry]:
        return keep_top(entries, self.fallback_size)

    async def consolidate(self, entries: Sequence[MemoryEntry], audio_context: str = "") -> list[MemoryEntry]:
        if not entries:
            return []
        summary = await self._summarize(entries, audio_context)
        if not summary:
            kept = self.fallback(entries)
            logger.info("memory_consolidated", mode="fallback", before=len(entries), after=len(kept))
            return kept
        logger.info("memory_consolidated", mode="summary", before=len(entries), after=1)
        return [MemoryEntry(content=summary, importance=self.importance, created_at=self.clock())]

    async def _summarize(self, entries: Sequence[MemoryEntry], audio_context: str) -> str:
        if self.chat is None:
            if not self._warned_unavailable:
                logger.warning("consolidator_unavailable", fallback="sort_truncate")
                self._warned_unavailable = True
            return ""
        payload = f"Entries:\n{render_transcript(entries)}"
        if audio_context.strip():
            payload += f'\n\nRecent audio: "{audio_context.strip()}"'
        try:
            resp = await self.chat.chat(
                [
                    Message(role="system", content=CONSOLIDATION_PROMPT),
                    Message(role="user", content=payload),
                ],
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            logger.warning("consolidation_failed", error=str(exc), entries=len(entries))
            return ""
        return (resp.content or "").strip()
