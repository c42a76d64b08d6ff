"""Streaming chat over session context."""

from glimpse.chat.context import SYSTEM_PROMPT, ContextBundle
from glimpse.chat.dispatcher import GENERIC_ERROR_MESSAGE, ActiveStreamView, StreamDispatcher

__all__ = [
    "GENERIC_ERROR_MESSAGE",
    "SYSTEM_PROMPT",
    "ActiveStreamView",
    "ContextBundle",
    "StreamDispatcher",
]
