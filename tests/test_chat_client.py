"""
Tests for ChatApiClient over httpx.MockTransport and, end to end, over the ASGI app.
"""

import json

import httpx
import pytest

from tripmate.api.sse import encode_frame
from tripmate.client.chat_client import ChatApiClient
from tripmate.client.reducer import ChatSession
from tripmate.main import create_app
from tripmate.schemas.events import ContentEvent, DoneEvent, ErrorEvent, ThinkingEvent
from tripmate.schemas.messages import HistoryMessage


def _client(handler) -> ChatApiClient:
    return ChatApiClient(base_url="http://api.test", transport=httpx.MockTransport(handler))


async def _collect(stream) -> list:
    return [e async for e in stream]


@pytest.mark.asyncio
async def test_stream_chat_posts_payload_and_parses_frames() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        body = encode_frame(ContentEvent(content="你好")) + encode_frame(DoneEvent())
        return httpx.Response(200, content=body.encode("utf-8"), headers={"Content-Type": "text/event-stream"})

    client = _client(handler)
    events = await _collect(client.stream_chat("三亚怎么玩", [HistoryMessage(role="user", content="Q0")]))
    await client.aclose()

    assert events == [ContentEvent(content="你好"), DoneEvent()]
    assert seen["path"] == "/api/chat"
    assert seen["body"] == {
        "message": "三亚怎么玩",
        "history": [{"role": "user", "content": "Q0"}],
        "stream": True,
        "useAgent": True,
    }


@pytest.mark.asyncio
async def test_error_status_uses_envelope_error() -> None:
    client = _client(lambda request: httpx.Response(400, json={"success": False, "error": "Invalid JSON body"}))
    events = await _collect(client.stream_chat("x", []))
    assert events == [ErrorEvent(message="Invalid JSON body"), DoneEvent()]


@pytest.mark.asyncio
async def test_error_status_without_envelope() -> None:
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))
    events = await _collect(client.stream_chat("x", []))
    assert events == [ErrorEvent(message="HTTP 502"), DoneEvent()]


@pytest.mark.asyncio
async def test_network_failure_ends_with_error_then_done() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    events = await _collect(_client(handler).stream_chat("x", []))
    assert events == [ErrorEvent(message="Network error: connection refused"), DoneEvent()]


@pytest.mark.asyncio
async def test_send_returns_envelope() -> None:
    client = _client(lambda request: httpx.Response(200, json={"success": True, "message": "Hi!"}))
    response = await client.send("hello there", [], use_agent=False)
    assert response.success is True
    assert response.message == "Hi!"


@pytest.mark.asyncio
async def test_send_with_unparseable_body() -> None:
    client = _client(lambda request: httpx.Response(500, text="oops"))
    response = await client.send("hello there", [])
    assert response.success is False
    assert response.error == "HTTP 500"


@pytest.mark.asyncio
async def test_session_over_asgi_app(make_deps) -> None:
    app = create_app()
    app.state.deps = make_deps(rounds=[[("content_delta", "Day 1: "), ("content_delta", "visit the old town."),
                                        ("content_done",)]])
    client = ChatApiClient(base_url="http://app.test", transport=httpx.ASGITransport(app=app))
    thinking: list = []
    session = ChatSession(client.stream_chat,
                          on_event=lambda m, e: thinking.append(e) if isinstance(e, ThinkingEvent) else None)
    try:
        reply = await session.send_message("帮我规划丽江行程")
    finally:
        await client.aclose()

    assert reply.content == "Day 1: visit the old town."
    assert reply.status == "done"
    assert thinking == [ThinkingEvent(content="Thinking...")]
