"""Streaming chat dispatcher with cancellation by stream identity."""

from __future__ import annotations

import asyncio
import inspect
from collections import OrderedDict
from collections.abc import Callable
from typing import Any
from uuid import uuid4

import structlog

from glimpse.chat.context import ContextBundle
from glimpse.exceptions import DuplicateStreamError, InvalidMediaError
from glimpse.llm.backends import ChatBackend
from glimpse.memory.store import MemoryStore
from glimpse.types import InlineMedia, StreamEvent, StreamSession, StreamState
from glimpse.utils import parse_data_url, trim, utcnow

logger = structlog.get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Error: Failed to stream response."

Subscriber = Callable[[StreamEvent], Any]


class StreamDispatcher:
    """Runs chat queries against the backend and relays cumulative snapshots.

    Every event carries its stream id. A newer ``submit`` supersedes older
    streams: they still run to completion and emit their own events, but
    only the current stream updates ``latest_response``. Consumers filter
    on their own active id (see ``ActiveStreamView``).
    """

    def __init__(
        self,
        chat: ChatBackend | None,
        memory: MemoryStore | None = None,
        audio_context: Callable[[], str] | None = None,
        max_sessions: int = 100,
    ) -> None:
        self.chat = chat
        self.memory = memory
        self.audio_context = audio_context or (lambda: "")
        self.max_sessions = max(1, int(max_sessions))
        self.latest_response = ""
        self._current_id: str | None = None
        self._sessions: OrderedDict[str, StreamSession] = OrderedDict()
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def current_id(self) -> str | None:
        return self._current_id

    def session(self, stream_id: str) -> StreamSession | None:
        return self._sessions.get(stream_id)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every event of every stream. Returns an unsubscribe handle."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def build_context(
        self,
        query: str,
        live_screen_text: str | None = None,
        live_image: str | None = None,
    ) -> ContextBundle:
        media: InlineMedia | None = None
        if live_image:
            try:
                media = parse_data_url(live_image)
            except InvalidMediaError as exc:
                logger.warning("live_media_rejected", reason=str(exc))
        return ContextBundle(
            query=query,
            screen_text=live_screen_text or "",
            media=media,
            memory_context=self.memory.render_context() if self.memory is not None else "",
            audio_context=self.audio_context() or "",
        )

    async def submit(
        self,
        query: str,
        live_screen_text: str | None = None,
        live_image: str | None = None,
        stream_id: str | None = None,
    ) -> str:
        """Start streaming an answer to ``query`` and return its stream id.

        Callers that filter events by id should pick ``stream_id`` themselves
        so they know it before any event can arrive; otherwise a fresh id is
        generated. Raises DuplicateStreamError for an id already in use.
        """
        if stream_id is None:
            stream_id = uuid4().hex
        elif not stream_id or stream_id in self._sessions:
            raise DuplicateStreamError(f"stream id already used or empty: {stream_id!r}")
        self._current_id = stream_id
        session = StreamSession(id=stream_id, query=query)
        self._remember(session)
        bundle = self.build_context(query, live_screen_text, live_image)
        task = asyncio.get_running_loop().create_task(
            self._run(session, bundle), name=f"glimpse-stream-{stream_id[:8]}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("stream_submitted", stream_id=stream_id, query=trim(query, 80), has_media=bundle.media is not None)
        return stream_id

    async def expire(self, stream_id: str) -> bool:
        """Retire a still-open stream with a terminal error event (caller-side deadline)."""
        session = self._sessions.get(stream_id)
        if session is None or session.state.terminal:
            return False
        await self._fail(session, reason="expired")
        return True

    async def wait_idle(self) -> None:
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    async def _run(self, session: StreamSession, bundle: ContextBundle) -> None:
        if self.chat is None:
            await self._fail(session, reason="backend_unavailable")
            return
        try:
            snapshots = self.chat.stream(bundle.to_messages())
            try:
                async for snapshot in snapshots:
                    if session.state.terminal:
                        break
                    session.state = StreamState.STREAMING
                    session.text = snapshot
                    self._track_latest(session)
                    await self._emit(StreamEvent(stream_id=session.id, text=snapshot))
            finally:
                close = getattr(snapshots, "aclose", None)
                if close is not None:
                    await close()
        except asyncio.CancelledError:
            await self._fail(session, reason="cancelled")
            raise
        except Exception as exc:
            logger.error("stream_failed", stream_id=session.id, error=str(exc))
            await self._fail(session, reason="backend_error")
            return
        await self._finish(session)

    async def _finish(self, session: StreamSession) -> None:
        if session.state.terminal:
            return
        session.state = StreamState.DONE
        session.finished_at = utcnow()
        self._track_latest(session)
        logger.info(
            "stream_done",
            stream_id=session.id,
            chars=len(session.text),
            superseded=session.id != self._current_id,
        )
        await self._emit(StreamEvent(stream_id=session.id, text=session.text, done=True))

    async def _fail(self, session: StreamSession, reason: str) -> None:
        if session.state.terminal:
            return
        session.state = StreamState.ERRORED
        session.finished_at = utcnow()
        logger.warning("stream_errored", stream_id=session.id, reason=reason)
        await self._emit(
            StreamEvent(stream_id=session.id, text=GENERIC_ERROR_MESSAGE, done=True, error=True)
        )

    def _track_latest(self, session: StreamSession) -> None:
        if session.id == self._current_id:
            self.latest_response = session.text

    def _remember(self, session: StreamSession) -> None:
        self._sessions[session.id] = session
        while len(self._sessions) > self.max_sessions:
            oldest_id = next(iter(self._sessions))
            if not self._sessions[oldest_id].state.terminal:
                break
            self._sessions.pop(oldest_id)

    async def _emit(self, event: StreamEvent) -> None:
        for callback in list(self._subscribers):
            try:
                maybe = callback(event)
                if inspect.isawaitable(maybe):
                    await maybe
            except Exception as exc:
                logger.error("subscriber_failed", stream_id=event.stream_id, error=str(exc))


class ActiveStreamView:
    """Consumer-side state that trusts only the stream it was last pointed at.

    Events tagged with any other id are ignored, as are events for the
    active id after its terminal event.
    """

    def __init__(self) -> None:
        self.active_id: str | None = None
        self.text = ""
        self.done = False
        self.error = False

    def activate(self, stream_id: str) -> None:
        self.active_id = stream_id
        self.text = ""
        self.done = False
        self.error = False

    def __call__(self, event: StreamEvent) -> bool:
        if event.stream_id != self.active_id or self.done:
            return False
        self.text = event.text
        if event.done:
            self.done = True
            self.error = event.error
        return True
