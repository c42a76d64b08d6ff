"""Shared utilities."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import orjson

if TYPE_CHECKING:
    from glimpse.types import InlineMedia

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w=.+-]+)*;base64,(?P<data>.+)$", re.DOTALL)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def trim(value: str, max_chars: int = 200) -> str:
    text = (value or "").strip()
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def parse_data_url(value: str, allowed_prefixes: tuple[str, ...] = ("image/", "video/")) -> "InlineMedia":
    """Split a base64 data URL into mime type and payload.

    Raises InvalidMediaError when the value is not a base64 data URL whose
    mime type starts with one of ``allowed_prefixes``.
    """
    from glimpse.exceptions import InvalidMediaError
    from glimpse.types import InlineMedia

    if not value or not isinstance(value, str):
        raise InvalidMediaError("empty media payload")
    m = _DATA_URL_RE.match(value.strip())
    if not m:
        raise InvalidMediaError("media payload is not a base64 data URL")
    mime = m.group("mime").lower()
    if not mime.startswith(allowed_prefixes):
        raise InvalidMediaError(f"unsupported media type: {mime}")
    data = m.group("data").strip()
    if not data:
        raise InvalidMediaError("media payload has no data")
    return InlineMedia(mime_type=mime, data=data)
