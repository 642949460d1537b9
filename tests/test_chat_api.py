"""
Tests for the HTTP surface: /api/chat (streaming and not), validation envelopes,
knowledge stats and system endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeIndex, make_hit
from tripmate.client.sse_parser import SSEFrameParser
from tripmate.main import create_app
from tripmate.schemas.events import ContentEvent, DoneEvent, ErrorEvent, ThinkingEvent


@pytest.fixture
def build_client(make_deps):
    def _build(**kwargs) -> TestClient:
        app = create_app()
        app.state.deps = make_deps(**kwargs)
        return TestClient(app)

    return _build


def _events(body: bytes) -> list:
    parser = SSEFrameParser()
    return parser.feed(body) + parser.flush()


def test_root_and_health(build_client) -> None:
    client = build_client()
    assert client.get("/").json() == {"status": "Tripmate travel assistant running"}
    assert client.get("/health").json() == {"ok": True}


def test_malformed_json_is_400(build_client) -> None:
    response = build_client().post(
        "/api/chat", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON body"}


@pytest.mark.parametrize(
    "body",
    [
        {"message": "   "},
        {"history": []},
        {"message": "hi there", "history": [{"role": "robot", "content": "x"}]},
        ["message"],
    ],
)
def test_invalid_fields_are_400(build_client, body) -> None:
    response = build_client().post("/api/chat", json=body)
    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["error"].startswith("Invalid request")


def test_agent_stream_returns_event_frames(build_client) -> None:
    client = build_client(rounds=[[("content_delta", "去亚龙湾。"), ("content_done",)]])

    response = client.post("/api/chat", json={"message": "三亚有什么好玩的", "history": []})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert _events(response.content) == [
        ThinkingEvent(content="Thinking..."),
        ContentEvent(content="去亚龙湾。"),
        DoneEvent(),
    ]


def test_agent_stream_failure_ends_with_error_then_done(build_client) -> None:
    client = build_client(rounds=[[RuntimeError("model unavailable")]])
    response = client.post("/api/chat", json={"message": "北京三日游"})
    events = _events(response.content)
    assert events[-2:] == [ErrorEvent(message="model unavailable"), DoneEvent()]


def test_plain_stream_uses_untagged_content(build_client) -> None:
    client = build_client(text=["你", "好"])
    response = client.post("/api/chat", json={"message": "hello there", "useAgent": False})
    assert _events(response.content) == [ContentEvent(content="你"), ContentEvent(content="好"), DoneEvent()]


def test_non_stream_agent_returns_envelope(build_client) -> None:
    client = build_client(rounds=[[("content_delta", "Day 1: visit the old town."), ("content_done",)]])
    response = client.post("/api/chat", json={"message": "帮我规划行程", "stream": False})
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Day 1: visit the old town."}


def test_non_stream_failure_is_500(build_client) -> None:
    client = build_client(rounds=[[RuntimeError("model unavailable")]])
    response = client.post("/api/chat", json={"message": "帮我规划行程", "stream": False})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "model unavailable"}


def test_non_stream_plain_chat(build_client) -> None:
    client = build_client(text=["Hi!"])
    response = client.post("/api/chat", json={"message": "hello there", "stream": False, "useAgent": False})
    assert response.json() == {"success": True, "message": "Hi!"}


def test_knowledge_stats(build_client) -> None:
    client = build_client(index=FakeIndex([make_hit("亚龙湾", "三亚", 0.9), make_hit("故宫", "北京", 0.9)]))
    response = client.get("/knowledge/stats")
    assert response.status_code == 200
    assert response.json() == {"totalDocuments": 2, "totalCities": 2, "cities": sorted(["三亚", "北京"])}


def test_knowledge_stats_without_index_is_503(build_client) -> None:
    response = build_client().get("/knowledge/stats")
    assert response.status_code == 503
    assert response.json()["success"] is False


def test_knowledge_stats_failure_is_503(build_client) -> None:
    class BrokenIndex(FakeIndex):
        def stats(self):
            raise RuntimeError("milvus down")

    response = build_client(index=BrokenIndex()).get("/knowledge/stats")
    assert response.status_code == 503
    assert "milvus down" in response.json()["error"]
