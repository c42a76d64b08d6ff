"""Prompt context assembled for a chat query."""

from __future__ import annotations

from dataclasses import dataclass

from glimpse.llm.messages import Message
from glimpse.types import InlineMedia

SYSTEM_PROMPT = """You are a concise technical assistant. You can see the user's screen and hear their audio. Provide direct, short answers. Never say "the user wants" or similar phrases. Help with:

- Coding problems and algorithms
- System design questions
- Debugging code
- Technical concepts
- Interview prep

Be brief and actionable."""

VIDEO_PROMPT = "Please analyze this screen recording and describe what you see happening in the video."


@dataclass
class ContextBundle:
    query: str
    screen_text: str = ""
    media: InlineMedia | None = None
    memory_context: str = ""
    audio_context: str = ""

    def to_messages(self, system_prompt: str = SYSTEM_PROMPT) -> list[Message]:
        parts = [f"Question: {self.query}"]
        if self.screen_text.strip():
            parts.append(f"Screen content: {self.screen_text.strip()}")
        if self.memory_context:
            parts.append(f"Session memory:\n{self.memory_context}")
        if self.audio_context:
            parts.append(f"Recent audio: {self.audio_context}")
        if self.media is not None and self.media.is_video:
            parts.append(VIDEO_PROMPT)
        return [
            Message(role="system", content=system_prompt),
            Message(
                role="user",
                content="\n\n".join(parts),
                media=[self.media] if self.media is not None else [],
            ),
        ]
