"""Bounded, importance-scored session memory."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from glimpse.config import MemoryConfig
from glimpse.memory.consolidator import Consolidator
from glimpse.memory.importance import ImportanceAssessor
from glimpse.memory.similarity import similarity
from glimpse.types import MemoryEntry, MemoryUpdate
from glimpse.utils import trim, utcnow

logger = structlog.get_logger(__name__)

MemoryListener = Callable[[MemoryUpdate], Any]


class MemoryStore:
    """Ordered (oldest first) collection of MemoryEntry with a size cap.

    Mutations run one at a time behind an asyncio lock that is held across
    the importance and consolidation calls, so each prompt sees exactly the
    entries its answer is applied to. The entry tuple is rebuilt privately
    and published in a single assignment; readers never see more than
    ``max_entries`` entries.
    """

    def __init__(
        self,
        assessor: ImportanceAssessor,
        consolidator: Consolidator,
        config: MemoryConfig | None = None,
        audio_context: Callable[[], str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or MemoryConfig()
        self.assessor = assessor
        self.consolidator = consolidator
        self.audio_context = audio_context or (lambda: "")
        self.clock = clock
        self._entries: tuple[MemoryEntry, ...] = ()
        self._lock = asyncio.Lock()
        self._listeners: list[MemoryListener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[MemoryEntry]:
        return list(self._entries)

    def is_duplicate(self, content: str) -> bool:
        window = max(0, int(self.config.recent_window))
        recent = self._entries[-window:] if window else ()
        threshold = float(self.config.duplicate_threshold)
        return any(similarity(e.content, content) > threshold for e in recent)

    def subscribe(self, callback: MemoryListener) -> Callable[[], None]:
        """Register ``callback`` for every published change. Returns an unsubscribe handle."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def add_observation(self, content: str) -> MemoryEntry | None:
        """Store an observation unless it is empty or repeats a recent entry.

        Returns the inserted entry, or None when the observation was dropped.
        """
        text = (content or "").strip()
        if not text:
            return None
        async with self._lock:
            if self.is_duplicate(text):
                logger.debug("observation_duplicate", preview=trim(text, 50))
                return None
            importance = await self.assessor.assess(text)
            entry = MemoryEntry(content=text, importance=importance, created_at=self.clock())
            candidate = self._entries + (entry,)
            consolidated = len(candidate) > self.config.max_entries
            if consolidated:
                candidate = tuple(await self._consolidate(candidate))
            self._entries = candidate
            logger.info(
                "observation_stored",
                importance=entry.importance,
                entries=len(self._entries),
                preview=trim(text, 50),
            )
        await self._notify("consolidated" if consolidated else "inserted")
        return entry

    async def clear(self) -> None:
        async with self._lock:
            self._entries = ()
        logger.info("memory_cleared")
        await self._notify("cleared")

    async def consolidate_now(self) -> list[MemoryEntry]:
        async with self._lock:
            if not self._entries:
                return []
            self._entries = tuple(await self._consolidate(self._entries))
            entries = list(self._entries)
        await self._notify("consolidated")
        return entries

    async def _consolidate(self, entries: tuple[MemoryEntry, ...]) -> list[MemoryEntry]:
        try:
            audio = self.audio_context() or ""
        except Exception as exc:
            logger.warning("audio_context_unreadable", error=str(exc))
            audio = ""
        result = await self.consolidator.consolidate(entries, audio_context=audio)
        if len(result) > self.config.max_entries:
            result = self.consolidator.fallback(result)[: self.config.max_entries]
        return result

    def render_context(self, now: datetime | None = None) -> str:
        """Render the recent-or-important entries as ``[HH:MM:SS] content`` lines."""
        entries = self._entries
        if not entries:
            return ""
        now = now or self.clock()
        cutoff = now - timedelta(minutes=float(self.config.render_recent_minutes))
        floor = int(self.config.render_min_importance)
        selected = [e for e in entries if e.importance >= floor or e.created_at >= cutoff]
        limit = max(0, int(self.config.render_limit))
        selected = selected[-limit:] if limit else []
        return "\n".join(f"[{e.created_at.strftime('%H:%M:%S')}] {e.content}" for e in selected)

    async def _notify(self, reason: str) -> None:
        # Runs outside the lock so listeners may read or mutate the store.
        if not self._listeners:
            return
        now = self.clock()
        update = MemoryUpdate(
            timestamp=now,
            reason=reason,
            entries=len(self._entries),
            context=self.render_context(now=now),
        )
        for callback in list(self._listeners):
            try:
                maybe = callback(update)
                if inspect.isawaitable(maybe):
                    await maybe
            except Exception as exc:
                logger.error("memory_listener_failed", reason=reason, error=str(exc))
