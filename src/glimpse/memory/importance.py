"""Importance rating of observations."""

from __future__ import annotations

import re

import structlog

from glimpse.llm.backends import ChatBackend
from glimpse.llm.messages import Message
from glimpse.types import clamp_importance
from glimpse.utils import trim

logger = structlog.get_logger(__name__)

DEFAULT_IMPORTANCE = 5

_INT_RE = re.compile(r"[-+]?\d+")

IMPORTANCE_PROMPT = (
    "Rate how important this screen or audio observation is for remembering what the "
    "user is working on, from 1 (irrelevant noise) to 10 (critical context such as code, "
    "errors, problem statements or decisions). Reply with the number only."
)


def parse_importance(raw: str, default: int = DEFAULT_IMPORTANCE) -> int:
    """Return the first integer in ``raw`` clamped to [1, 10], or ``default``."""
    m = _INT_RE.search(raw or "")
    if not m:
        return clamp_importance(default)
    return clamp_importance(int(m.group(0)))


class ImportanceAssessor:
    """Maps an observation to an importance in [1, 10]; never raises."""

    def __init__(
        self,
        chat: ChatBackend | None,
        default: int = DEFAULT_IMPORTANCE,
        max_tokens: int = 8,
    ) -> None:
        self.chat = chat
        self.default = clamp_importance(default)
        self.max_tokens = max_tokens
        self._warned_unavailable = False

    async def assess(self, content: str) -> int:
        if self.chat is None:
            if not self._warned_unavailable:
                logger.warning("importance_assessor_unavailable", fallback=self.default)
                self._warned_unavailable = True
            return self.default
        try:
            resp = await self.chat.chat(
                [
                    Message(role="system", content=IMPORTANCE_PROMPT),
                    Message(role="user", content=trim(content, max_chars=4000)),
                ],
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            logger.warning("importance_assessment_failed", error=str(exc), fallback=self.default)
            return self.default
        score = parse_importance(resp.content, default=self.default)
        logger.debug("importance_assessed", importance=score, raw=trim(resp.content, 40))
        return score
