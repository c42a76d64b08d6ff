from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from glimpse.api.routes import _bounded_put, create_app
from glimpse.assistant import Assistant
from glimpse.config import Config
from glimpse.llm.messages import ChatResponse
from glimpse.types import StreamEvent

PNG = "data:image/png;base64,iVBORw0KGgo="
TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class _FakeChat:
    async def chat(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        if "Consolidate" in messages[0].content:
            return ChatResponse(content="consolidated notes")
        return ChatResponse(content="9")

    async def stream(self, messages, temperature=None, max_tokens=None):  # noqa: ANN001
        yield "Use"
        yield "Use BFS."

    async def close(self) -> None:
        return None


class _Transcriber:
    def __init__(self) -> None:
        self.mime_types: list[str] = []

    async def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        self.mime_types.append(mime_type)
        return "walk me through your solution"


def _client(debug: bool = False, transcriber=None) -> TestClient:  # noqa: ANN001
    cfg = Config()
    cfg.debug = debug
    cfg.api.bearer_token = TOKEN
    assistant = Assistant(cfg, chat=_FakeChat(), transcriber=transcriber, auto_backends=False)
    return TestClient(create_app(cfg, assistant))


def test_health_is_public_and_other_routes_need_token():
    with _client() as client:
        assert client.get("/api/v1/health").json()["status"] == "ok"
        assert client.get("/api/v1/memory/context").status_code == 401
        assert client.get("/api/v1/memory/context", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/api/v1/memory/context", headers=AUTH).status_code == 200


def test_chat_events_stream_over_websocket():
    with _client() as client:
        with client.websocket_connect(f"/api/v1/chat/events?token={TOKEN}") as ws:
            resp = client.post("/api/v1/chat", json={"message": "shortest path?"}, headers=AUTH)
            assert resp.status_code == 200
            stream_id = resp.json()["stream_id"]

            events = []
            while True:
                event = ws.receive_json()
                events.append(event)
                if event["done"]:
                    break

        assert [e["text"] for e in events] == ["Use", "Use BFS.", "Use BFS."]
        assert all(e["stream_id"] == stream_id for e in events)
        assert events[-1]["error"] is False


def test_websocket_rejects_missing_token():
    with _client() as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/api/v1/chat/events") as ws:
                ws.receive_json()


def test_chat_rejects_invalid_media_and_empty_message():
    with _client() as client:
        bad = client.post("/api/v1/chat", json={"message": "hi", "image_data_url": "nope"}, headers=AUTH)
        assert bad.status_code == 422
        empty = client.post("/api/v1/chat", json={"message": ""}, headers=AUTH)
        assert empty.status_code == 422
        ok = client.post("/api/v1/chat", json={"message": "hi", "image_data_url": PNG}, headers=AUTH)
        assert ok.status_code == 200


def test_audio_transcribe_updates_transcript():
    transcriber = _Transcriber()
    with _client(transcriber=transcriber) as client:
        assert client.get("/api/v1/audio/transcript", headers=AUTH).json() == {"text": ""}
        resp = client.post(
            "/api/v1/audio/transcribe",
            content=b"\x1aE\xdf\xa3",
            headers={**AUTH, "Content-Type": "audio/webm"},
        )
        assert resp.json() == {"text": "walk me through your solution"}
        assert transcriber.mime_types == ["audio/webm"]
        assert client.get("/api/v1/audio/transcript", headers=AUTH).json()["text"] == "walk me through your solution"
        empty = client.post("/api/v1/audio/transcribe", content=b"", headers=AUTH)
        assert empty.status_code == 422


def test_debug_routes_hidden_unless_debug():
    with _client(debug=False) as client:
        assert client.get("/api/v1/debug/memory/entries", headers=AUTH).status_code == 404


def test_debug_memory_routes():
    cfg = Config()
    cfg.debug = True
    cfg.api.bearer_token = TOKEN
    assistant = Assistant(cfg, chat=_FakeChat(), auto_backends=False)
    with TestClient(create_app(cfg, assistant)) as client:
        client.portal.call(assistant.memory.add_observation, "trie insert and search")
        entries = client.get("/api/v1/debug/memory/entries", headers=AUTH).json()
        assert entries["count"] == 1
        assert entries["entries"][0]["content"] == "trie insert and search"
        assert entries["entries"][0]["importance"] == 9

        started = client.post("/api/v1/debug/capture/start", headers=AUTH).json()
        assert started["running"] is False
        stopped = client.post("/api/v1/debug/capture/stop", headers=AUTH).json()
        assert stopped["running"] is False

        merged = client.post("/api/v1/debug/memory/consolidate", headers=AUTH).json()
        assert merged["count"] == 1
        assert merged["entries"][0]["content"] == "consolidated notes"

        assert client.delete("/api/v1/memory", headers=AUTH).json() == {"cleared": True}
        assert client.get("/api/v1/memory/context", headers=AUTH).json() == {"context": ""}


def test_client_chosen_stream_id_receives_terminal_error_without_backend():
    cfg = Config()
    cfg.debug = False
    cfg.api.bearer_token = TOKEN
    assistant = Assistant(cfg, chat=None, auto_backends=False)
    with TestClient(create_app(cfg, assistant)) as client:
        with client.websocket_connect(f"/api/v1/chat/events?token={TOKEN}") as ws:
            resp = client.post("/api/v1/chat", json={"message": "hi", "stream_id": "ui-7"}, headers=AUTH)
            assert resp.json() == {"stream_id": "ui-7"}
            event = ws.receive_json()
        assert event["stream_id"] == "ui-7"
        assert event["done"] is True and event["error"] is True

        again = client.post("/api/v1/chat", json={"message": "hi", "stream_id": "ui-7"}, headers=AUTH)
        assert again.status_code == 409
        blank = client.post("/api/v1/chat", json={"message": "hi", "stream_id": ""}, headers=AUTH)
        assert blank.status_code == 422


def test_debug_memory_events_push_updates():
    cfg = Config()
    cfg.debug = True
    cfg.api.bearer_token = TOKEN
    assistant = Assistant(cfg, chat=_FakeChat(), auto_backends=False)
    with TestClient(create_app(cfg, assistant)) as client:
        with client.websocket_connect(f"/api/v1/debug/memory/events?token={TOKEN}") as ws:
            client.portal.call(assistant.memory.add_observation, "union find with path compression")
            inserted = ws.receive_json()
            client.delete("/api/v1/memory", headers=AUTH)
            cleared = ws.receive_json()

        assert inserted["reason"] == "inserted"
        assert inserted["entries"] == 1
        assert inserted["context"].endswith("union find with path compression")
        assert isinstance(inserted["timestamp"], str)
        assert cleared == {**cleared, "reason": "cleared", "entries": 0, "context": ""}


def test_event_queue_drops_oldest_when_client_lags():
    async def _run() -> list[str]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=2)
        put = _bounded_put(queue)
        for text in ("a", "b", "c"):
            put(StreamEvent(stream_id="s", text=text))
        return [queue.get_nowait().text for _ in range(queue.qsize())]

    assert asyncio.run(_run()) == ["b", "c"]
