from __future__ import annotations

import asyncio

import pytest

from glimpse.chat.dispatcher import GENERIC_ERROR_MESSAGE, ActiveStreamView, StreamDispatcher
from glimpse.exceptions import DuplicateStreamError
from glimpse.llm.messages import ChatResponse
from glimpse.types import StreamEvent, StreamState

PNG = "data:image/png;base64,iVBORw0KGgo="


class _FakeStreamChat:
    """Streams the given snapshots for every query; optionally waits on a gate per query text."""

    def __init__(self, snapshots: dict[str, list[str]], gates: dict[str, asyncio.Event] | None = None) -> None:
        self.snapshots = snapshots
        self.gates = gates or {}
        self.seen: list = []

    async def chat(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        return ChatResponse(content="5")

    async def stream(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        self.seen.append(messages)
        user = messages[-1].content
        key = next(k for k in self.snapshots if f"Question: {k}" in user)
        for i, snapshot in enumerate(self.snapshots[key]):
            gate = self.gates.get(key)
            if gate is not None and i == 1:
                await gate.wait()
            await asyncio.sleep(0)
            yield snapshot


class _BrokenStreamChat:
    async def chat(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        raise RuntimeError("down")

    async def stream(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        yield "partial"
        raise ConnectionError("stream reset")


class _HangingChat:
    async def stream(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        yield "thinking"
        await asyncio.Event().wait()


def _collect(dispatcher: StreamDispatcher) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    dispatcher.subscribe(events.append)
    return events


def test_stream_relays_cumulative_snapshots_then_done():
    async def _run() -> None:
        chat = _FakeStreamChat({"what is a heap": ["A", "A heap", "A heap is a tree."]})
        dispatcher = StreamDispatcher(chat)
        events = _collect(dispatcher)
        stream_id = await dispatcher.submit("what is a heap")
        assert events == []
        await dispatcher.wait_idle()

        assert [e.text for e in events] == ["A", "A heap", "A heap is a tree.", "A heap is a tree."]
        assert [e.done for e in events] == [False, False, False, True]
        assert all(e.stream_id == stream_id and not e.error for e in events)
        assert dispatcher.latest_response == "A heap is a tree."
        assert dispatcher.session(stream_id).state is StreamState.DONE

    asyncio.run(_run())


def test_superseded_stream_never_reaches_active_view():
    async def _run() -> None:
        gate_a = asyncio.Event()
        chat = _FakeStreamChat(
            {"A": ["alpha 1", "alpha 2", "alpha final"], "B": ["bravo 1", "bravo final"]},
            gates={"A": gate_a},
        )
        dispatcher = StreamDispatcher(chat)
        view = ActiveStreamView()
        events = _collect(dispatcher)
        dispatcher.subscribe(view)

        id_a = await dispatcher.submit("A")
        view.activate(id_a)
        await asyncio.sleep(0.01)
        id_b = await dispatcher.submit("B")
        view.activate(id_b)
        assert dispatcher.current_id == id_b

        # Let B finish first, then release A so its events arrive after B's done.
        while not (dispatcher.session(id_b).state.terminal):
            await asyncio.sleep(0)
        gate_a.set()
        await dispatcher.wait_idle()

        assert view.text == "bravo final"
        assert view.done and not view.error
        assert dispatcher.latest_response == "bravo final"
        a_done = [e for e in events if e.stream_id == id_a and e.done]
        b_done = [e for e in events if e.stream_id == id_b and e.done]
        assert len(a_done) == 1 and len(b_done) == 1
        assert events.index(a_done[0]) > events.index(b_done[0])

    asyncio.run(_run())


def test_stream_failure_emits_single_generic_error_terminal():
    async def _run() -> None:
        dispatcher = StreamDispatcher(_BrokenStreamChat())
        events = _collect(dispatcher)
        stream_id = await dispatcher.submit("explain quicksort")
        await dispatcher.wait_idle()

        terminal = [e for e in events if e.done]
        assert len(terminal) == 1
        assert terminal[0].error
        assert terminal[0].text == GENERIC_ERROR_MESSAGE
        assert terminal[0].stream_id == stream_id
        assert dispatcher.session(stream_id).state is StreamState.ERRORED

    asyncio.run(_run())


def test_missing_backend_fails_the_stream():
    async def _run() -> None:
        dispatcher = StreamDispatcher(None)
        events = _collect(dispatcher)
        await dispatcher.submit("hello")
        await dispatcher.wait_idle()
        assert len(events) == 1
        assert events[0].done and events[0].error

    asyncio.run(_run())


def test_expire_retires_open_stream_once():
    async def _run() -> None:
        dispatcher = StreamDispatcher(_HangingChat())
        events = _collect(dispatcher)
        stream_id = await dispatcher.submit("slow question")
        await asyncio.sleep(0.01)
        assert await dispatcher.expire(stream_id) is True
        assert await dispatcher.expire(stream_id) is False
        assert await dispatcher.expire("unknown") is False
        await dispatcher.aclose()

        terminal = [e for e in events if e.done]
        assert len(terminal) == 1 and terminal[0].error
        assert events[0].text == "thinking"

    asyncio.run(_run())


def test_aclose_cancels_in_flight_streams_with_error_event():
    async def _run() -> None:
        dispatcher = StreamDispatcher(_HangingChat())
        events = _collect(dispatcher)
        await dispatcher.submit("never ends")
        await asyncio.sleep(0.01)
        await dispatcher.aclose()
        assert events[-1].done and events[-1].error

    asyncio.run(_run())


def test_unsubscribe_and_failing_subscriber():
    async def _run() -> None:
        dispatcher = StreamDispatcher(_FakeStreamChat({"q": ["x", "xy"]}))
        received: list[StreamEvent] = []
        unsubscribe = dispatcher.subscribe(received.append)

        def broken(event: StreamEvent) -> None:
            raise ValueError("ui crashed")

        dispatcher.subscribe(broken)
        seen_async: list[str] = []

        async def async_sub(event: StreamEvent) -> None:
            seen_async.append(event.text)

        dispatcher.subscribe(async_sub)
        await dispatcher.submit("q")
        await dispatcher.wait_idle()
        assert [e.text for e in received] == ["x", "xy", "xy"]
        assert seen_async == ["x", "xy", "xy"]

        unsubscribe()
        unsubscribe()
        await dispatcher.submit("q")
        await dispatcher.wait_idle()
        assert len(received) == 3

    asyncio.run(_run())


def test_context_bundle_includes_live_media_memory_and_audio():
    async def _run() -> None:
        chat = _FakeStreamChat({"why": ["because"]})
        dispatcher = StreamDispatcher(chat, audio_context=lambda: "so the interviewer asked")
        await dispatcher.submit("why", live_screen_text="IndexError: list index out of range", live_image=PNG)
        await dispatcher.wait_idle()

        system, user = chat.seen[0]
        assert system.role == "system"
        assert "Screen content: IndexError" in user.content
        assert "Recent audio: so the interviewer asked" in user.content
        assert user.media[0].mime_type == "image/png"

    asyncio.run(_run())


def test_invalid_live_media_is_dropped_not_fatal():
    async def _run() -> None:
        chat = _FakeStreamChat({"q": ["ok"]})
        dispatcher = StreamDispatcher(chat)
        events = _collect(dispatcher)
        await dispatcher.submit("q", live_image="not-a-data-url")
        await dispatcher.wait_idle()
        assert chat.seen[0][-1].media == []
        assert events[-1].done and not events[-1].error

    asyncio.run(_run())


def test_active_view_ignores_events_after_terminal():
    view = ActiveStreamView()
    view.activate("s1")
    assert view(StreamEvent(stream_id="s1", text="final", done=True))
    assert not view(StreamEvent(stream_id="s1", text="late"))
    assert not view(StreamEvent(stream_id="s0", text="other"))
    assert view.text == "final"


def test_video_payload_adds_video_instruction():
    from glimpse.chat.context import VIDEO_PROMPT, ContextBundle
    from glimpse.types import InlineMedia

    bundle = ContextBundle(query="what happened?", media=InlineMedia("video/webm", "GkXfow=="))
    system, user = bundle.to_messages()
    assert user.content.endswith(VIDEO_PROMPT)
    assert user.media[0].is_video
    assert "Session memory" not in user.content


def test_caller_chosen_stream_id_tags_every_event():
    async def _run() -> None:
        dispatcher = StreamDispatcher(None)
        view = ActiveStreamView()
        view.activate("ui-42")
        dispatcher.subscribe(view)
        assert await dispatcher.submit("hello", stream_id="ui-42") == "ui-42"
        assert dispatcher.current_id == "ui-42"
        await dispatcher.wait_idle()
        assert view.done and view.error
        assert view.text == GENERIC_ERROR_MESSAGE

        with pytest.raises(DuplicateStreamError):
            await dispatcher.submit("again", stream_id="ui-42")
        with pytest.raises(DuplicateStreamError):
            await dispatcher.submit("empty", stream_id="")
        assert dispatcher.current_id == "ui-42"

    asyncio.run(_run())
